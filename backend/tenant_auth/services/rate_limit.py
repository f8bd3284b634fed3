"""
Database-backed fixed-window rate limiting
"""

import logging
import math
from datetime import timedelta
from typing import Dict, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tenant_auth.core.config import settings
from tenant_auth.core.exceptions import RateLimited
from tenant_auth.models import RateLimitTracker
from tenant_auth.models.base import utcnow

logger = logging.getLogger(__name__)

API_LIMIT = "api"
LOGIN_LIMIT = "login"


class RateLimiter:
    """Counts attempts per (limit type, key) inside a fixed time window"""

    def __init__(self, db: Session):
        self.db = db

    def _get_limit_config(self, limit_type: str) -> Tuple[int, timedelta]:
        configs: Dict[str, Tuple[int, timedelta]] = {
            API_LIMIT: (settings.API_RATE_LIMIT, timedelta(seconds=settings.API_RATE_LIMIT_WINDOW_SEC)),
            LOGIN_LIMIT: (settings.LOGIN_MAX_ATTEMPTS, timedelta(seconds=settings.LOGIN_ATTEMPT_WINDOW_SEC)),
        }
        return configs.get(limit_type, (10, timedelta(hours=1)))

    def _tracker(self, limit_type: str, key: str) -> RateLimitTracker:
        """Fetch the tracker, opening a new window when absent or elapsed"""
        _, window = self._get_limit_config(limit_type)
        now = utcnow()

        tracker = (
            self.db.query(RateLimitTracker)
            .filter(RateLimitTracker.limit_type == limit_type, RateLimitTracker.limit_key == key)
            .first()
        )
        if tracker is None:
            tracker = RateLimitTracker(
                limit_type=limit_type,
                limit_key=key,
                attempt_count=0,
                window_start=now,
                window_end=now + window,
            )
            self.db.add(tracker)
            try:
                self.db.flush()
            except IntegrityError:
                # Another request created it first
                self.db.rollback()
                return self._tracker(limit_type, key)
        elif now >= tracker.window_end:
            tracker.attempt_count = 0
            tracker.window_start = now
            tracker.window_end = now + window
        return tracker

    def _retry_after(self, tracker: RateLimitTracker) -> int:
        return max(1, math.ceil((tracker.window_end - utcnow()).total_seconds()))

    def check(self, limit_type: str, key: str) -> None:
        """
        Raise RateLimited if the key has used up its attempts for the window
        """
        max_attempts, _ = self._get_limit_config(limit_type)
        tracker = self._tracker(limit_type, key)
        if tracker.attempt_count >= max_attempts:
            self.db.commit()
            raise RateLimited("Too many requests, please try again later", self._retry_after(tracker))

    def hit(self, limit_type: str, key: str) -> None:
        """
        Count one attempt, raising RateLimited when it exceeds the limit
        """
        max_attempts, _ = self._get_limit_config(limit_type)
        tracker = self._tracker(limit_type, key)
        if tracker.attempt_count >= max_attempts:
            self.db.commit()
            logger.warning(f"Rate limit exceeded: type={limit_type} key={key}")
            raise RateLimited("Too many requests, please try again later", self._retry_after(tracker))
        tracker.attempt_count += 1
        self.db.commit()

    def record_failure(self, limit_type: str, key: str) -> None:
        """Count a failed attempt without checking the limit"""
        tracker = self._tracker(limit_type, key)
        tracker.attempt_count += 1

    def reset(self, limit_type: str, key: str) -> None:
        """Forget a key, e.g. after a successful login"""
        self.db.query(RateLimitTracker).filter(
            RateLimitTracker.limit_type == limit_type,
            RateLimitTracker.limit_key == key,
        ).delete(synchronize_session=False)
