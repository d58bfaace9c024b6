"""Read-only view over the normalized product catalog."""
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from feedforge.models.product import Product

STREAM_BATCH_SIZE = 500


class CatalogSource:
    """
    Streams a tenant's products in a stable (updated_at, id) order.

    Rows are fetched in batches with ``yield_per`` so memory stays bounded by
    the batch size, not the catalog size.
    """

    def __init__(self, db: Session, batch_size: int = STREAM_BATCH_SIZE):
        self.db = db
        self.batch_size = batch_size

    def stream(self, tenant_id: str) -> Iterator[Product]:
        query = (
            self.db.query(Product)
            .filter(Product.tenant_id == tenant_id)
            .order_by(Product.updated_at, Product.id)
        )
        yield from query.yield_per(self.batch_size)

    def snapshot_at(self, tenant_id: str) -> Optional[datetime]:
        """Latest product change for the tenant, or None for an empty catalog."""
        return (
            self.db.query(func.max(Product.updated_at))
            .filter(Product.tenant_id == tenant_id)
            .scalar()
        )
