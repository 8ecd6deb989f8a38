from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Integer, String

from app.core.database import Base


class AnalysisUsageRecord(Base):
    """Append-only ledger read by QuotaGate."""

    __tablename__ = "analysis_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    project_id = Column(String(32), nullable=False, index=True)
    analysis_type = Column(String(32), nullable=False, default="incremental")
    opinions_processed = Column(Integer, nullable=False, default=0)
    execution_time_ms = Column(Integer, nullable=True)
    executed_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("ix_analysis_usage_user_executed", "user_id", "executed_at"),
    )
