from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from datetime import datetime
from decimal import Decimal
from typing import Optional

from feedforge.errors import ConfigError
from feedforge.models.feed import FeedChannel, FeedFormat, FeedStatus


class FilterSpec(BaseModel):
    """
    Product filter embedded in ``Feed.settings["filter"]``.

    Inclusion sets are ``None`` when unconstrained; an empty list is
    normalized to ``None`` so "no constraint" has a single spelling.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    min_price: Optional[Decimal] = Field(default=None, ge=0)
    max_price: Optional[Decimal] = Field(default=None, ge=0)
    include_brands: Optional[frozenset[str]] = None
    include_categories: Optional[frozenset[str]] = None
    include_tags: Optional[frozenset[str]] = None
    include_collections: Optional[frozenset[str]] = None
    exclude_product_ids: frozenset[str] = frozenset()

    @field_validator(
        "include_brands", "include_categories", "include_tags", "include_collections",
        mode="after",
    )
    @classmethod
    def _empty_means_unconstrained(cls, value):
        if value is not None and len(value) == 0:
            return None
        return value

    @model_validator(mode="after")
    def _check_price_range(self) -> "FilterSpec":
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("min_price must not exceed max_price")
        return self


class Transformations(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    default_condition: str = "new"
    title_max_length: int = Field(default=150, gt=0)
    description_max_length: int = Field(default=5000, gt=0)
    # e.g. "https://shop.example/products/{external_id}"; used when a product has no link
    link_template: Optional[str] = None

    @field_validator("default_condition")
    @classmethod
    def _known_condition(cls, value: str) -> str:
        if value not in ("new", "refurbished", "used"):
            raise ValueError("default_condition must be new, refurbished or used")
        return value


class FeedSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    filter: FilterSpec = FilterSpec()
    transformations: Transformations = Transformations()

    @classmethod
    def from_raw(cls, raw: Optional[dict]) -> "FeedSettings":
        """Parse stored settings, raising ConfigError(invalid_filter) on bad input."""
        try:
            return cls.model_validate(raw or {})
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigError(f"Invalid feed settings: {problems}", code="invalid_filter") from e

    def to_raw(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class FeedCreate(BaseModel):
    tenant_id: str
    name: str = Field(min_length=1, max_length=255)
    channel: FeedChannel
    format: FeedFormat
    status: FeedStatus = FeedStatus.ACTIVE
    settings: dict = Field(default_factory=dict)


class FeedUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    status: Optional[FeedStatus] = None
    settings: Optional[dict] = None


class FeedResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    channel: FeedChannel
    format: FeedFormat
    status: FeedStatus
    settings: dict
    products_count: int
    last_generated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class GenerationHistoryResponse(BaseModel):
    id: int
    feed_id: str
    status: str
    trigger: str
    products_processed: int
    products_included: int
    products_excluded: int
    generation_time_ms: Optional[int] = None
    file_size_bytes: Optional[int] = None
    artifact_ref: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RegenerateResponse(BaseModel):
    run_id: int
    feed_id: str
    status: str = "accepted"
