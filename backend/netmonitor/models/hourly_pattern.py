"""HourlyPattern model - per-day, per-hour rollups for the heatmap."""
from sqlalchemy import Column, Integer, Float, String, Date, Index

from ..database import Base


class HourlyPattern(Base):
    """Ping totals for one target during one UTC hour of one day."""
    
    __tablename__ = "hourly_patterns"
    
    date = Column(Date, primary_key=True)
    hour = Column(Integer, primary_key=True)  # 0-23
    target = Column(String, primary_key=True)
    total_pings = Column(Integer, nullable=False)
    failed_pings = Column(Integer, nullable=False)
    avg_rtt_ms = Column(Float, nullable=True)  # successful pings only
    max_rtt_ms = Column(Float, nullable=True)
    failure_rate = Column(Float, nullable=False)  # percent, 2 decimals
    
    __table_args__ = (
        Index("idx_hourly_patterns", "hour", "target"),
    )
