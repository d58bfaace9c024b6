from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, Iterator, Optional
import re

from feedforge.errors import SerializationError
from feedforge.schemas.feed import Transformations

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
TWO_PLACES = Decimal("0.01")

AVAILABILITY_LABELS = {
    "IN_STOCK": "in stock",
    "OUT_OF_STOCK": "out of stock",
    "PREORDER": "preorder",
    "BACKORDER": "backorder",
}


@dataclass(frozen=True)
class FeedContext:
    """Snapshot of the feed attributes a serializer needs, detached from the session."""
    feed_id: str
    name: str
    channel: str
    format: str
    generated_at: datetime
    base_url: str = ""
    transformations: Transformations = field(default_factory=Transformations)

    @classmethod
    def from_feed(cls, feed, generated_at: datetime, base_url: str = "",
                  transformations: Optional[Transformations] = None) -> "FeedContext":
        return cls(
            feed_id=feed.id,
            name=feed.name,
            channel=getattr(feed.channel, "value", feed.channel),
            format=getattr(feed.format, "value", feed.format),
            generated_at=generated_at,
            base_url=base_url.rstrip("/"),
            transformations=transformations or Transformations(),
        )

    @property
    def feed_url(self) -> str:
        return f"{self.base_url}/feeds/{self.feed_id}/download"


@dataclass
class SerializeStats:
    products_included: int = 0
    file_size_bytes: int = 0


def format_price(amount, currency: str, product_id: str = "") -> str:
    """Render "<amount> <ISO-4217>" with two decimal places, e.g. "9.99 USD"."""
    if not currency or not CURRENCY_PATTERN.match(currency):
        raise SerializationError(f"Product {product_id}: invalid currency {currency!r}")
    try:
        value = Decimal(str(amount)).quantize(TWO_PLACES)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise SerializationError(f"Product {product_id}: invalid price {amount!r}") from e
    if not value.is_finite():
        raise SerializationError(f"Product {product_id}: invalid price {amount!r}")
    return f"{value} {currency}"


def truncate(text: Optional[str], limit: int) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit]


def product_link(product, context: FeedContext) -> str:
    if product.link:
        return product.link
    url = product.metadata_value("url")
    if url:
        return url
    template = context.transformations.link_template
    if template:
        try:
            return template.format(
                id=product.id,
                external_id=product.external_id or "",
                sku=product.sku or "",
            )
        except (KeyError, IndexError) as e:
            raise SerializationError(f"Invalid link_template placeholder: {e}") from e
    return ""


def product_condition(product, context: FeedContext) -> str:
    condition = product.metadata_value("condition")
    return condition or context.transformations.default_condition


def availability_label(product) -> str:
    return AVAILABILITY_LABELS.get(product.availability, "out of stock")


class BaseSerializer(ABC):
    """
    Streaming serializer for one (channel, format) pair.

    ``stream`` yields UTF-8 chunks (header, one chunk per product, footer) and
    fills ``SerializeStats`` as it goes; nothing beyond the current record is
    buffered. Output is a pure function of the context and product order.
    """

    content_type: str = "application/octet-stream"
    extension: str = "bin"

    @abstractmethod
    def header(self, context: FeedContext) -> str:
        ...

    @abstractmethod
    def record(self, context: FeedContext, product, index: int) -> str:
        ...

    @abstractmethod
    def footer(self, context: FeedContext) -> str:
        ...

    def stream(self, context: FeedContext, products: Iterable,
               stats: Optional[SerializeStats] = None) -> Iterator[bytes]:
        stats = stats if stats is not None else SerializeStats()

        chunk = self._encode(self.header(context))
        stats.file_size_bytes += len(chunk)
        yield chunk

        for index, product in enumerate(products):
            chunk = self._encode(self.record(context, product, index))
            stats.products_included += 1
            stats.file_size_bytes += len(chunk)
            yield chunk

        chunk = self._encode(self.footer(context))
        stats.file_size_bytes += len(chunk)
        yield chunk

    def serialize(self, context: FeedContext, products: Iterable) -> tuple[bytes, SerializeStats]:
        stats = SerializeStats()
        data = b"".join(self.stream(context, products, stats))
        return data, stats

    @staticmethod
    def _encode(text: str) -> bytes:
        try:
            return text.encode("utf-8")
        except UnicodeEncodeError as e:
            raise SerializationError(f"Unencodable text in feed output: {e.reason}") from e
