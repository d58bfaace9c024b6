"""Instagram Shopping JSON catalog, streamed one product object at a time."""
import json

from feedforge.services.serializers.base import (
    BaseSerializer,
    FeedContext,
    availability_label,
    format_price,
    product_condition,
    product_link,
    truncate,
)
from feedforge.utils.clock import isoformat_utc


def _dumps(value) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class InstagramShoppingJSONSerializer(BaseSerializer):
    content_type = "application/json"
    extension = "json"

    def header(self, context: FeedContext) -> str:
        feed = {
            "name": context.name,
            "channel": context.channel,
            "format": context.format,
            "generated_at": isoformat_utc(context.generated_at),
        }
        return '{"feed":' + _dumps(feed) + ',"products":['

    def record(self, context: FeedContext, product, index: int) -> str:
        rules = context.transformations
        item = {
            "id": product.feed_id,
            "name": truncate(product.title, rules.title_max_length),
            "description": truncate(product.description, rules.description_max_length),
            "price": format_price(product.price, product.currency, product.id),
            "sku": product.sku or "",
            "brand": product.brand or "",
            "category": product.category or "",
            "image_url": product.image_list,
            "availability": availability_label(product),
            "condition": product_condition(product, context),
            "url": product_link(product, context),
        }
        return ("," if index else "") + _dumps(item)

    def footer(self, context: FeedContext) -> str:
        return "]}"
