"""
Fixed-window rate limit counters
"""

from sqlalchemy import Column, String, Integer, UniqueConstraint

from tenant_auth.models.base import BaseModel, UTCDateTime


class RateLimitTracker(BaseModel):
    __tablename__ = "rate_limit_trackers"
    __table_args__ = (
        UniqueConstraint('limit_type', 'limit_key', name='uq_rate_limit_key'),
    )

    limit_type = Column(String(50), nullable=False, comment="api, login, ...")

    limit_key = Column(String(255), nullable=False, comment="Client IP, email, ...")

    attempt_count = Column(Integer, default=0, nullable=False)

    window_start = Column(UTCDateTime, nullable=False)

    window_end = Column(UTCDateTime, nullable=False)
