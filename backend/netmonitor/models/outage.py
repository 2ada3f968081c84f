"""OutageRecord model - legacy outage table.

Outages are derived from ping_results on read. The table is still created so
databases shared with older deployments keep the same schema.
"""
from sqlalchemy import Column, Integer, String, DateTime

from ..database import Base


class OutageRecord(Base):
    """A persisted outage period."""
    
    __tablename__ = "outages"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    target = Column(String, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    checks_failed = Column(Integer, nullable=True)
