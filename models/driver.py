# models/driver.py
"""
Driver model - identity, referral pointer, integration keys and fee settings.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime, Text
from models.base import Base, AuditMixin


class Driver(Base, AuditMixin):
    __tablename__ = 'drivers'

    # Primary identification
    driverID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    iban = Column(String, nullable=True)

    type = Column(String, default="affiliate", nullable=False)  # affiliate, renter
    status = Column(String, default="active", index=True)  # active, inactive (never deleted)

    # Upline driver (the indicator who referred this driver)
    referredBy = Column(Integer, nullable=True, index=True)

    # Per-platform integration keys
    uberKey = Column(String, nullable=True)  # driver UUID
    boltKey = Column(String, nullable=True)  # driver email on Bolt
    myprioCard = Column(String, nullable=True)  # fuel card number
    viaverdeKey = Column(String, nullable=True)  # OBU / transponder tag
    vehiclePlate = Column(String, nullable=True)

    # Renters pay a weekly rental fee
    rentalFee = Column(DECIMAL(12, 2), default=0)

    # Optional admin fee override (mode + value only, the base comes from config)
    adminFeeMode = Column(String, nullable=True)  # percent, fixed
    adminFeeValue = Column(DECIMAL(12, 2), nullable=True)

    # Admin fee exemption window
    adminFeeExempt = Column(Boolean, default=False)
    exemptionStartDate = Column(DateTime, nullable=True)
    exemptionWeeks = Column(Integer, default=0)
    exemptionReason = Column(Text, nullable=True)
    exemptionSetBy = Column(String, nullable=True)
    exemptionSetAt = Column(DateTime, nullable=True)

    @property
    def isRenter(self) -> bool:
        return self.type == "renter"

    @property
    def isActive(self) -> bool:
        return self.status == "active"

    def __repr__(self):
        return f"<Driver(driverID={self.driverID}, name={self.name}, type={self.type})>"
