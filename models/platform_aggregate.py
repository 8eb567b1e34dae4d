# models/platform_aggregate.py
"""
WeeklyPlatformAggregate - one normalized total per (driver, week, platform, pass).
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey, UniqueConstraint
from models.base import Base, AuditMixin


class WeeklyPlatformAggregate(Base, AuditMixin):
    __tablename__ = 'weekly_platform_aggregates'
    __table_args__ = (
        UniqueConstraint('driverID', 'weekId', 'platform', 'aggregationPass',
                         name='uq_aggregate_driver_week_platform_pass'),
    )

    aggregateID = Column(Integer, primary_key=True, autoincrement=True)
    driverID = Column(Integer, ForeignKey('drivers.driverID'), nullable=False, index=True)
    weekId = Column(String, nullable=False, index=True)  # "2025-W02" format
    platform = Column(String, nullable=False)  # uber, bolt, myprio, viaverde

    totalValue = Column(DECIMAL(12, 2), nullable=False, default=0)
    totalTrips = Column(Integer, nullable=False, default=0)

    # First raw reference key seen for this driver/platform
    referenceId = Column(String, nullable=True)

    # Corrections create a new pass instead of mutating a consumed one
    aggregationPass = Column(Integer, nullable=False, default=1)
    consumedAt = Column(DateTime, nullable=True)  # set when a settlement reads this pass

    def __repr__(self):
        return (f"<WeeklyPlatformAggregate(driver={self.driverID}, week={self.weekId}, "
                f"platform={self.platform}, total={self.totalValue})>")
