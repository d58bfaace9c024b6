"""Google Shopping RSS 2.0 feed with the g: namespace."""
import re
from xml.sax.saxutils import escape

from feedforge.services.serializers.base import (
    BaseSerializer,
    FeedContext,
    availability_label,
    format_price,
    product_condition,
    product_link,
    truncate,
)

GOOGLE_NAMESPACE = "http://base.google.com/ns/1.0"
MAX_ADDITIONAL_IMAGES = 10

# C0 controls except TAB, LF, CR are not allowed in XML 1.0
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def xml_text(value) -> str:
    if value is None:
        return ""
    return escape(_CONTROL_CHARS.sub("", str(value)), _QUOTE_ENTITIES)


def _element(name: str, value, indent: str = "      ") -> str:
    return f"{indent}<{name}>{xml_text(value)}</{name}>\n"


class GoogleShoppingXMLSerializer(BaseSerializer):
    content_type = "application/xml"
    extension = "xml"

    def header(self, context: FeedContext) -> str:
        return (
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            f'<rss version="2.0" xmlns:g="{GOOGLE_NAMESPACE}">\n'
            "  <channel>\n"
            + _element("title", context.name, "    ")
            + _element("link", context.feed_url, "    ")
            + _element("description", f"{context.name} - Google Shopping product feed", "    ")
        )

    def record(self, context: FeedContext, product, index: int) -> str:
        rules = context.transformations
        images = product.image_list

        parts = ["    <item>\n"]
        parts.append(_element("g:id", product.feed_id))
        parts.append(_element("g:title", truncate(product.title, rules.title_max_length)))
        parts.append(_element("g:description", truncate(product.description, rules.description_max_length)))
        parts.append(_element("g:link", product_link(product, context)))
        parts.append(_element("g:image_link", images[0] if images else ""))
        for image in images[1:1 + MAX_ADDITIONAL_IMAGES]:
            parts.append(_element("g:additional_image_link", image))
        parts.append(_element("g:availability", availability_label(product)))
        parts.append(_element("g:price", format_price(product.price, product.currency, product.id)))
        parts.append(_element("g:condition", product_condition(product, context)))
        parts.append(_element("g:brand", product.brand or ""))
        if product.gtin:
            parts.append(_element("g:gtin", product.gtin))
        if product.mpn:
            parts.append(_element("g:mpn", product.mpn))
        parts.append(_element("g:product_type", product.category or ""))
        parts.append("    </item>\n")
        return "".join(parts)

    def footer(self, context: FeedContext) -> str:
        return "  </channel>\n</rss>\n"
