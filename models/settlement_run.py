# models/settlement_run.py
"""
SettlementRun - phase ledger of a weekly settlement batch.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from datetime import datetime, timezone
from models.base import Base


class SettlementRun(Base):
    __tablename__ = 'settlement_runs'

    runID = Column(Integer, primary_key=True, autoincrement=True)
    startedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    finishedAt = Column(DateTime, nullable=True)

    weekId = Column(String, nullable=False, index=True)
    trigger = Column(String, default="settle")  # settle, reprocess

    # settling -> settled -> complete, or failed
    status = Column(String, default="settling")
    driversProcessed = Column(Integer, default=0)
    indicatorsCount = Column(Integer, default=0)

    errors = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    def __repr__(self):
        return f"<SettlementRun(week={self.weekId}, trigger={self.trigger}, status={self.status})>"
