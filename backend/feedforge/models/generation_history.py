from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from feedforge.database import Base
import enum


class GenerationStatus(str, enum.Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class GenerationHistory(Base):
    """
    One row per pipeline run.

    Created as ``running`` when the generation lock is taken and finalized
    exactly once as ``success`` or ``failed``. Rows left ``running`` by a crash
    are failed with ``abandoned`` by startup reconciliation.
    """
    __tablename__ = "generation_history"

    id = Column(Integer, primary_key=True, index=True)
    feed_id = Column(
        String(36),
        ForeignKey("feeds.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status = Column(String(16), default=GenerationStatus.RUNNING.value, nullable=False, index=True)
    trigger = Column(String(16), default="manual", nullable=False)  # manual, scheduled

    products_processed = Column(Integer, default=0, nullable=False)
    products_included = Column(Integer, default=0, nullable=False)
    products_excluded = Column(Integer, default=0, nullable=False)

    generation_time_ms = Column(Integer, nullable=True)
    file_size_bytes = Column(BigInteger, nullable=True)
    artifact_ref = Column(String(500), nullable=True)

    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    feed = relationship("Feed", back_populates="history")

    def __repr__(self) -> str:
        return f"<GenerationHistory {self.id}: feed={self.feed_id} {self.status}>"
