from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func

from .database import Base


class InventorySnapshot(Base):
    """Serialized inventory records of one project (local fallback copy)"""
    __tablename__ = "inventory_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(String, unique=True, index=True, nullable=False)
    items = Column(JSON, nullable=False, default=list)
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ProcoreToken(Base):
    """Stored OAuth tokens for the Procore API"""
    __tablename__ = "procore_tokens"

    id = Column(Integer, primary_key=True, index=True)
    session_key = Column(String, unique=True, index=True, nullable=False)
    access_token = Column(String, nullable=True)
    refresh_token = Column(String, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
