# models/unmapped_entry.py
"""
UnmappedImportEntry - imported rows whose reference key matched no driver.
"""
from sqlalchemy import Column, Integer, String, DECIMAL
from models.base import Base, AuditMixin


class UnmappedImportEntry(Base, AuditMixin):
    __tablename__ = 'unmapped_import_entries'

    entryID = Column(Integer, primary_key=True, autoincrement=True)
    weekId = Column(String, nullable=False, index=True)
    platform = Column(String, nullable=False)
    aggregationPass = Column(Integer, nullable=False, default=1)

    referenceId = Column(String, nullable=False)  # normalized key
    referenceLabel = Column(String, nullable=True)  # raw key / name as imported
    totalValue = Column(DECIMAL(12, 2), default=0)
    rowCount = Column(Integer, default=0)

    def __repr__(self):
        return f"<UnmappedImportEntry(week={self.weekId}, platform={self.platform}, ref={self.referenceId})>"
