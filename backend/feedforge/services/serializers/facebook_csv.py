"""Facebook Catalog CSV (RFC 4180, CRLF row terminator)."""
from decimal import Decimal

from feedforge.services.serializers.base import (
    BaseSerializer,
    FeedContext,
    availability_label,
    format_price,
    product_condition,
    product_link,
    truncate,
)

HEADER = (
    "id", "title", "description", "availability", "condition", "price", "link",
    "image_link", "brand", "google_product_category", "additional_image_link",
    "sale_price", "gtin", "mpn", "item_group_id", "color", "size", "gender",
    "age_group", "material", "pattern", "shipping", "custom_label_0", "custom_label_1",
)
ROW_END = "\r\n"

# Columns sourced straight from product metadata when present
METADATA_COLUMNS = (
    "google_product_category", "item_group_id", "color", "size", "gender",
    "age_group", "material", "pattern", "shipping", "custom_label_0", "custom_label_1",
)

_NEEDS_QUOTES = (",", '"', "\n", "\r")


def csv_field(value, always_quote: bool = False) -> str:
    text = "" if value is None else str(value)
    if always_quote or any(ch in text for ch in _NEEDS_QUOTES):
        return '"' + text.replace('"', '""') + '"'
    return text


def _has_markdown(product) -> bool:
    if product.compare_at_price is None:
        return False
    return Decimal(str(product.compare_at_price)) > Decimal(str(product.price))


class FacebookCatalogCSVSerializer(BaseSerializer):
    content_type = "text/csv"
    extension = "csv"

    def header(self, context: FeedContext) -> str:
        return ",".join(HEADER) + ROW_END

    def record(self, context: FeedContext, product, index: int) -> str:
        rules = context.transformations
        images = product.image_list

        # Facebook shows price as the list price and sale_price as the discounted one
        if _has_markdown(product):
            price = format_price(product.compare_at_price, product.currency, product.id)
            sale_price = format_price(product.price, product.currency, product.id)
        else:
            price = format_price(product.price, product.currency, product.id)
            sale_price = ""

        row = {
            "id": product.feed_id,
            "title": truncate(product.title, rules.title_max_length),
            "description": truncate(product.description, rules.description_max_length),
            "availability": availability_label(product),
            "condition": product_condition(product, context),
            "price": price,
            "link": product_link(product, context),
            "image_link": images[0] if images else "",
            "brand": product.brand or "",
            "sale_price": sale_price,
            "gtin": product.gtin or "",
            "mpn": product.mpn or "",
        }
        for column in METADATA_COLUMNS:
            row[column] = product.metadata_value(column) or ""

        fields = []
        for column in HEADER:
            if column == "additional_image_link":
                fields.append(csv_field(",".join(images[1:]), always_quote=True))
            else:
                fields.append(csv_field(row.get(column, "")))
        return ",".join(fields) + ROW_END

    def footer(self, context: FeedContext) -> str:
        return ""
