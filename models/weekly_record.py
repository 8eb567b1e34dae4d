# models/weekly_record.py
"""
DriverWeeklyRecord - settlement output (payment) for one driver-week.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime, Text, JSON, ForeignKey, \
    UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class DriverWeeklyRecord(Base, AuditMixin):
    __tablename__ = 'driver_weekly_records'
    __table_args__ = (
        UniqueConstraint('driverID', 'weekId', name='uq_record_driver_week'),
    )

    recordID = Column(Integer, primary_key=True, autoincrement=True)
    driverID = Column(Integer, ForeignKey('drivers.driverID'), nullable=False, index=True)
    weekId = Column(String, nullable=False, index=True)
    weekStart = Column(String, nullable=True)  # YYYY-MM-DD
    weekEnd = Column(String, nullable=True)  # YYYY-MM-DD

    # Denormalized driver info
    driverName = Column(String, nullable=True)
    driverType = Column(String, nullable=True)  # affiliate, renter

    # Earnings
    uberTotal = Column(DECIMAL(12, 2), default=0)
    boltTotal = Column(DECIMAL(12, 2), default=0)
    grossEarnings = Column(DECIMAL(12, 2), default=0)
    taxValue = Column(DECIMAL(12, 2), default=0)
    netOfTax = Column(DECIMAL(12, 2), default=0)

    # Admin fee
    adminFeeValue = Column(DECIMAL(12, 2), default=0)
    adminFeeBase = Column(String, nullable=True)  # AdminFeeBase value used
    adminFeeBaseValue = Column(DECIMAL(12, 2), default=0)
    adminFeeMode = Column(String, nullable=True)  # percent, fixed
    adminFeeRate = Column(DECIMAL(12, 3), default=0)  # percent (0-100) or fixed amount
    adminFeeExempt = Column(Boolean, default=False)

    # Expenses
    fuel = Column(DECIMAL(12, 2), default=0)
    tolls = Column(DECIMAL(12, 2), default=0)
    rent = Column(DECIMAL(12, 2), default=0)
    financingInstallment = Column(DECIMAL(12, 2), default=0)
    financingInterest = Column(DECIMAL(12, 2), default=0)
    financingOnus = Column(DECIMAL(12, 2), default=0)
    financingTotal = Column(DECIMAL(12, 2), default=0)
    expenseTotal = Column(DECIMAL(12, 2), default=0)

    # Repasse
    netPayout = Column(DECIMAL(12, 2), default=0)

    # Affiliate bonuses attached by the commission phase
    bonusPending = Column(JSON, nullable=True)  # [{level, referredDriverId, bonusAmount, base}]
    bonusPaid = Column(JSON, nullable=True)
    bonusTotal = Column(DECIMAL(12, 2), default=0)
    totalAmount = Column(DECIMAL(12, 2), default=0)  # netPayout + bonusTotal

    # Payment
    paymentStatus = Column(String, default="pending")  # pending, paid, cancelled
    paidAt = Column(DateTime, nullable=True)
    paidBy = Column(String, nullable=True)

    # Payment proof, attached outside the engine
    proofUrl = Column(String, nullable=True)
    proofStoragePath = Column(String, nullable=True)
    proofFileName = Column(String, nullable=True)
    proofUploadedAt = Column(DateTime, nullable=True)

    # Immutable inputs used for audit and reprocessing
    snapshot = Column(JSON, nullable=True)

    notes = Column(Text, nullable=True)

    driver = relationship('Driver', backref='weekly_records')

    def __repr__(self):
        return f"<DriverWeeklyRecord(driver={self.driverID}, week={self.weekId}, repasse={self.netPayout})>"
