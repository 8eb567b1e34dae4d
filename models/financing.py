# models/financing.py
"""
Financing model - loans and weekly discounts deducted from the driver's repasse.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Financing(Base, AuditMixin):
    __tablename__ = 'financing'

    financingID = Column(Integer, primary_key=True, autoincrement=True)
    driverID = Column(Integer, ForeignKey('drivers.driverID'), nullable=False, index=True)

    type = Column(String, default="discount")  # loan, discount
    status = Column(String, default="active")  # active, completed

    amount = Column(DECIMAL(12, 2), default=0)  # loan principal, or weekly value for discounts
    weeks = Column(Integer, nullable=True)
    remainingWeeks = Column(Integer, nullable=True)
    weeklyAmount = Column(DECIMAL(12, 2), nullable=True)  # explicit weekly installment

    # Percentages applied on the driver's weekly earnings net of tax
    interestPercent = Column(DECIMAL(6, 3), default=0)
    onusPercent = Column(DECIMAL(6, 3), default=0)

    startDate = Column(DateTime, nullable=True)

    driver = relationship('Driver', backref='financings')

    def __repr__(self):
        return f"<Financing(financingID={self.financingID}, driver={self.driverID}, type={self.type})>"
