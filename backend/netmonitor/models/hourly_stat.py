"""HourlyStat model - archived hourly totals that outlive raw samples."""
from sqlalchemy import Column, Integer, Float, String, DateTime

from ..database import Base


class HourlyStat(Base):
    """Archive row written once before the raw samples of an hour are pruned."""
    
    __tablename__ = "hourly_stats"
    
    hour = Column(DateTime, primary_key=True)  # truncated to the hour
    target = Column(String, primary_key=True)
    total_pings = Column(Integer, nullable=False)
    successful_pings = Column(Integer, nullable=False)
    avg_rtt_ms = Column(Float, nullable=True)
    max_rtt_ms = Column(Float, nullable=True)
    min_rtt_ms = Column(Float, nullable=True)
    packet_loss_percent = Column(Float, nullable=False)
