"""PingSample model - raw ping outcomes."""
from datetime import datetime
from sqlalchemy import Column, Integer, Float, String, DateTime, Boolean, Index

from ..database import Base


class PingSample(Base):
    """One ping of one target - kept for the raw retention window."""
    
    __tablename__ = "ping_results"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, nullable=False)
    target = Column(String, nullable=False)
    success = Column(Boolean, nullable=False)
    rtt_ms = Column(Float, nullable=True)  # NULL if failed
    error_message = Column(String, nullable=True)  # NULL if succeeded
    created_at = Column(DateTime, default=datetime.utcnow)
    
    __table_args__ = (
        Index("idx_timestamp", "timestamp"),
        Index("idx_target_timestamp", "target", "timestamp"),
    )
