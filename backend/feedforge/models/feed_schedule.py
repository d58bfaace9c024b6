from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from feedforge.database import Base

ALLOWED_INTERVAL_HOURS = (1, 6, 12, 24, 168)

# Consecutive failed runs after which a schedule disables itself.
AUTO_PAUSE_THRESHOLD = 3


class FeedSchedule(Base):
    """
    Per-feed auto-regeneration schedule.

    Mutated by the scheduler after each run (next_run_at, failure tracking,
    auto-pause) and by the control plane on user edits.
    """
    __tablename__ = "feed_schedules"

    id = Column(Integer, primary_key=True, index=True)
    feed_id = Column(
        String(36),
        ForeignKey("feeds.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    enabled = Column(Boolean, default=True, nullable=False)
    interval_hours = Column(Integer, nullable=False)
    next_run_at = Column(DateTime, nullable=True, index=True)
    last_run_at = Column(DateTime, nullable=True)

    consecutive_failures = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    feed = relationship("Feed", back_populates="schedule")

    @staticmethod
    def interval_for(hours: int) -> timedelta:
        return timedelta(hours=hours)

    @property
    def interval(self) -> timedelta:
        return self.interval_for(self.interval_hours)

    @property
    def auto_paused(self) -> bool:
        return not self.enabled and self.consecutive_failures >= AUTO_PAUSE_THRESHOLD

    def record_success(self, now: datetime) -> None:
        """Call after a successful scheduled run."""
        self.last_run_at = now
        self.consecutive_failures = 0
        self.last_error = None
        self._advance(now)

    def record_failure(self, reason: str, now: datetime) -> None:
        """Call after a failed scheduled run. Auto-pauses at the threshold."""
        self.last_run_at = now
        self.consecutive_failures = (self.consecutive_failures or 0) + 1
        self.last_error = reason
        self._advance(now)
        if self.consecutive_failures >= AUTO_PAUSE_THRESHOLD:
            self.enabled = False

    def enable(self, now: Optional[datetime] = None) -> None:
        """Explicit re-enable from the control plane."""
        self.enabled = True
        self.consecutive_failures = 0
        self.last_error = None
        if now is not None and (self.next_run_at is None or self.next_run_at < now):
            self.next_run_at = now

    def _advance(self, now: datetime) -> None:
        # Missed windows coalesce into a single run.
        candidate = now + self.interval
        if self.next_run_at is None or candidate > self.next_run_at:
            self.next_run_at = candidate

    def __repr__(self) -> str:
        state = "enabled" if self.enabled else "disabled"
        return f"<FeedSchedule feed={self.feed_id}: every {self.interval_hours}h, {state}>"
