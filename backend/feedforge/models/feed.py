from sqlalchemy import Column, Integer, String, DateTime, JSON, Enum as SQLEnum, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from feedforge.database import Base
import enum
import uuid


class FeedChannel(str, enum.Enum):
    GOOGLE_SHOPPING = "google-shopping"
    FACEBOOK_CATALOG = "facebook-catalog"
    INSTAGRAM_SHOPPING = "instagram-shopping"


class FeedFormat(str, enum.Enum):
    XML = "xml"
    CSV = "csv"
    JSON = "json"


class FeedStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    GENERATING = "generating"
    ERROR = "error"
    PAUSED = "paused"


# Each channel accepts exactly one format.
CHANNEL_FORMATS = {
    FeedChannel.GOOGLE_SHOPPING: FeedFormat.XML,
    FeedChannel.FACEBOOK_CATALOG: FeedFormat.CSV,
    FeedChannel.INSTAGRAM_SHOPPING: FeedFormat.JSON,
}

# Statuses from which a generation run may take the lock.
LOCKABLE_STATUSES = (FeedStatus.ACTIVE, FeedStatus.ERROR, FeedStatus.PAUSED)


def _values(enum_cls):
    return [member.value for member in enum_cls]


def is_supported_combination(channel, format) -> bool:
    try:
        return CHANNEL_FORMATS[FeedChannel(channel)] == FeedFormat(format)
    except ValueError:
        return False


class Feed(Base):
    """
    Declarative generation unit: one catalog file for one downstream channel.

    ``status == generating`` is the per-feed generation lock. It is taken by a
    guarded single-row UPDATE and released by the same run.
    """
    __tablename__ = "feeds"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    channel = Column(
        SQLEnum(FeedChannel, values_callable=_values, native_enum=False, length=32),
        nullable=False,
    )
    format = Column(
        SQLEnum(FeedFormat, values_callable=_values, native_enum=False, length=8),
        nullable=False,
    )
    status = Column(
        SQLEnum(FeedStatus, values_callable=_values, native_enum=False, length=16),
        default=FeedStatus.ACTIVE,
        nullable=False,
        index=True,
    )

    # {"filter": {...}, "transformations": {...}}
    settings = Column(JSON, default=dict)

    products_count = Column(Integer, default=0, nullable=False)
    last_generated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    schedule = relationship("FeedSchedule", back_populates="feed", uselist=False, cascade="all, delete-orphan")
    webhook = relationship("WebhookSubscription", back_populates="feed", uselist=False, cascade="all, delete-orphan")
    history = relationship("GenerationHistory", back_populates="feed", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uix_feed_tenant_name"),
    )

    @property
    def media_type(self) -> str:
        return {
            FeedFormat.XML: "application/xml",
            FeedFormat.CSV: "text/csv",
            FeedFormat.JSON: "application/json",
        }[FeedFormat(self.format)]

    def __repr__(self) -> str:
        return f"<Feed {self.id}: {self.name} ({self.channel.value}/{self.format.value}, {self.status.value})>"
