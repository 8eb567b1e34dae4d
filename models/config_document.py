# models/config_document.py
"""
ConfigDocument - key-value configuration documents (admin fee, commission, finance).
"""
from sqlalchemy import Column, String, JSON
from models.base import Base, AuditMixin


class ConfigDocument(Base, AuditMixin):
    __tablename__ = 'config_documents'

    key = Column(String, primary_key=True)
    data = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<ConfigDocument(key={self.key})>"
