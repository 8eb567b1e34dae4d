# models/affiliate_bonus.py
"""
AffiliateBonus model - multi-level commissions earned by an indicator in one week.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class AffiliateBonus(Base, AuditMixin):
    __tablename__ = 'affiliate_bonuses'
    __table_args__ = (
        UniqueConstraint('indicatorID', 'weekId', name='uq_bonus_indicator_week'),
    )

    bonusID = Column(Integer, primary_key=True, autoincrement=True)
    indicatorID = Column(Integer, ForeignKey('drivers.driverID'), nullable=False, index=True)
    weekId = Column(String, nullable=False, index=True)

    total = Column(DECIMAL(12, 2), nullable=False, default=0)
    details = Column(JSON, nullable=True)  # [{level, referredDriverId, bonusAmount, base}]

    indicator = relationship('Driver', backref='affiliate_bonuses')

    def __repr__(self):
        return f"<AffiliateBonus(indicator={self.indicatorID}, week={self.weekId}, total={self.total})>"
