"""
Account owner. Only the plan fields matter to the engine (quota tiers).
"""

import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, String

from app.core.database import Base


class PlanType(str, enum.Enum):
    FREE = "free"
    TRIAL = "trial"
    PRO = "pro"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False, default="")
    name = Column(String(255), nullable=True)
    plan = Column(String(16), nullable=False, default=PlanType.FREE.value, index=True)  # free|trial|pro|expired|cancelled
    trial_end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
