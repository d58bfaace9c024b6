from sqlalchemy import Column, String, DateTime, Numeric, Text, JSON, Index
from sqlalchemy.sql import func
from feedforge.database import Base
import enum
import uuid


class Availability(str, enum.Enum):
    IN_STOCK = "IN_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    PREORDER = "PREORDER"
    BACKORDER = "BACKORDER"


class Product(Base):
    """
    Normalized catalog product, written by upstream connectors.

    Read-only to feed generation: the pipeline streams these rows per tenant
    ordered by (updated_at, id) and never mutates them.
    """
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)
    sku = Column(String(255), nullable=False)

    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    brand = Column(String(255), nullable=True)
    category = Column(String(500), nullable=True)
    gtin = Column(String(50), nullable=True)
    mpn = Column(String(100), nullable=True)
    link = Column(String(1024), nullable=True)

    price = Column(Numeric(12, 2), nullable=False)
    compare_at_price = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), default="USD", nullable=False)
    availability = Column(String(20), default=Availability.IN_STOCK.value, nullable=False)

    images = Column(JSON, default=list)
    tags = Column(JSON, default=list)
    collections = Column(JSON, default=list)
    metadata_ = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_products_tenant_order", "tenant_id", "updated_at", "id"),
    )

    @property
    def feed_id(self) -> str:
        """Identifier exposed to shopping platforms."""
        return self.external_id or self.id

    @property
    def image_list(self) -> list[str]:
        return [img for img in (self.images or []) if img]

    def metadata_value(self, key: str, default=None):
        return (self.metadata_ or {}).get(key, default)

    def __repr__(self) -> str:
        return f"<Product {self.id}: {self.title}>"
