"""Tests for the Google XML, Facebook CSV and Instagram JSON serializers."""
import json
from datetime import datetime
from decimal import Decimal
from xml.etree import ElementTree

import pytest

from feedforge.errors import ConfigError, SerializationError
from feedforge.models import FeedChannel, FeedFormat, Product
from feedforge.schemas.feed import Transformations
from feedforge.services.serializers import FeedContext, format_price, get_serializer
from feedforge.services.serializers.facebook_csv import HEADER, csv_field
from feedforge.services.serializers.google_xml import GOOGLE_NAMESPACE, xml_text

GENERATED_AT = datetime(2026, 3, 1, 6, 30, 0)


def context(channel, format, **transformations):
    return FeedContext(
        feed_id="feed-1",
        name="Summer Catalog",
        channel=channel.value,
        format=format.value,
        generated_at=GENERATED_AT,
        base_url="http://feeds.test",
        transformations=Transformations(**transformations),
    )


def product(**overrides):
    values = dict(
        id="p1",
        external_id=None,
        sku="SKU-1",
        title="T&S",
        description="a<b",
        brand="B",
        category="C",
        price=Decimal("9.99"),
        currency="USD",
        availability="IN_STOCK",
        images=["http://x/i.jpg"],
        link="http://shop.test/p1",
        metadata_={},
    )
    values.update(overrides)
    return Product(**values)


@pytest.fixture
def google():
    return get_serializer(FeedChannel.GOOGLE_SHOPPING, FeedFormat.XML), context(
        FeedChannel.GOOGLE_SHOPPING, FeedFormat.XML
    )


@pytest.fixture
def facebook():
    return get_serializer(FeedChannel.FACEBOOK_CATALOG, FeedFormat.CSV), context(
        FeedChannel.FACEBOOK_CATALOG, FeedFormat.CSV
    )


@pytest.fixture
def instagram():
    return get_serializer(FeedChannel.INSTAGRAM_SHOPPING, FeedFormat.JSON), context(
        FeedChannel.INSTAGRAM_SHOPPING, FeedFormat.JSON
    )


class TestRegistry:
    def test_unsupported_combination(self):
        with pytest.raises(ConfigError) as exc:
            get_serializer(FeedChannel.GOOGLE_SHOPPING, FeedFormat.CSV)
        assert exc.value.code == "unsupported_channel_format"

    def test_unknown_format(self):
        with pytest.raises(ConfigError):
            get_serializer("google-shopping", "yaml")


class TestFormatPrice:
    def test_two_decimals(self):
        assert format_price(Decimal("9.9"), "USD") == "9.90 USD"
        assert format_price(15, "EUR") == "15.00 EUR"

    def test_invalid_currency(self):
        with pytest.raises(SerializationError):
            format_price(Decimal("1"), "usd")


class TestGoogleShoppingXML:
    def test_golden_fragments(self, google):
        serializer, ctx = google
        data, stats = serializer.serialize(ctx, [product()])
        text = data.decode("utf-8")

        assert "<g:title>T&amp;S</g:title>" in text
        assert "<g:description>a&lt;b</g:description>" in text
        assert "<g:price>9.99 USD</g:price>" in text
        assert "<g:availability>in stock</g:availability>" in text
        assert "<g:id>p1</g:id>" in text
        assert "<g:image_link>http://x/i.jpg</g:image_link>" in text
        assert "<g:condition>new</g:condition>" in text
        assert "<g:brand>B</g:brand>" in text
        assert "<g:product_type>C</g:product_type>" in text
        assert stats.products_included == 1
        assert stats.file_size_bytes == len(data)

    def test_document_structure(self, google):
        serializer, ctx = google
        data, _ = serializer.serialize(ctx, [product(), product(id="p2", title="Second")])

        root = ElementTree.fromstring(data)
        assert root.tag == "rss"
        assert root.attrib["version"] == "2.0"
        channel = root.find("channel")
        assert channel.find("title").text == "Summer Catalog"
        assert channel.find("link").text == "http://feeds.test/feeds/feed-1/download"
        items = channel.findall("item")
        assert [i.find(f"{{{GOOGLE_NAMESPACE}}}id").text for i in items] == ["p1", "p2"]

    def test_namespace_declared(self, google):
        serializer, ctx = google
        data, _ = serializer.serialize(ctx, [])
        assert b'<rss version="2.0" xmlns:g="http://base.google.com/ns/1.0">' in data

    def test_escapes_quotes_and_strips_control_characters(self):
        assert xml_text('say "hi" it\'s') == "say &quot;hi&quot; it&apos;s"
        assert xml_text("a\x00b\x1fc\td\ne\rf") == "abc\td\ne\rf"

    def test_external_id_preferred(self, google):
        serializer, ctx = google
        data, _ = serializer.serialize(ctx, [product(external_id="shopify-42")])
        assert b"<g:id>shopify-42</g:id>" in data

    def test_optional_identifiers_only_when_present(self, google):
        serializer, ctx = google
        without, _ = serializer.serialize(ctx, [product()])
        assert b"g:gtin" not in without
        assert b"g:mpn" not in without

        with_ids, _ = serializer.serialize(ctx, [product(gtin="0123456789012", mpn="MPN-1")])
        assert b"<g:gtin>0123456789012</g:gtin>" in with_ids
        assert b"<g:mpn>MPN-1</g:mpn>" in with_ids

    def test_additional_images_capped_at_ten(self, google):
        serializer, ctx = google
        images = [f"http://x/{i}.jpg" for i in range(15)]
        data, _ = serializer.serialize(ctx, [product(images=images)])
        assert data.count(b"<g:additional_image_link>") == 10
        assert b"http://x/10.jpg" in data
        assert b"http://x/11.jpg" not in data

    def test_title_truncated(self, google):
        serializer, _ = google
        ctx = context(FeedChannel.GOOGLE_SHOPPING, FeedFormat.XML, title_max_length=5)
        data, _ = serializer.serialize(ctx, [product(title="Long product title")])
        assert b"<g:title>Long </g:title>" in data

    def test_link_template_used_without_link(self, google):
        serializer, _ = google
        ctx = context(
            FeedChannel.GOOGLE_SHOPPING, FeedFormat.XML,
            link_template="https://shop.test/products/{external_id}",
        )
        data, _ = serializer.serialize(ctx, [product(link=None, external_id="hat")])
        assert b"<g:link>https://shop.test/products/hat</g:link>" in data

    def test_condition_from_metadata(self, google):
        serializer, ctx = google
        data, _ = serializer.serialize(ctx, [product(metadata_={"condition": "refurbished"})])
        assert b"<g:condition>refurbished</g:condition>" in data


class TestFacebookCatalogCSV:
    def test_header_row(self, facebook):
        serializer, ctx = facebook
        data, stats = serializer.serialize(ctx, [])
        assert data == (
            b"id,title,description,availability,condition,price,link,image_link,brand,"
            b"google_product_category,additional_image_link,sale_price,gtin,mpn,item_group_id,"
            b"color,size,gender,age_group,material,pattern,shipping,custom_label_0,custom_label_1\r\n"
        )
        assert stats.products_included == 0

    def test_quote_escaping(self, facebook):
        serializer, ctx = facebook
        data, _ = serializer.serialize(ctx, [product(title='Hello, "World"')])
        assert b'"Hello, ""World"""' in data

    def test_csv_field_rules(self):
        assert csv_field("plain") == "plain"
        assert csv_field("a,b") == '"a,b"'
        assert csv_field("line\nbreak") == '"line\nbreak"'
        assert csv_field("cr\r") == '"cr\r"'
        assert csv_field(None) == ""
        assert csv_field("", always_quote=True) == '""'

    def test_row_layout(self, facebook):
        serializer, ctx = facebook
        images = ["http://x/1.jpg", "http://x/2.jpg", "http://x/3.jpg"]
        data, stats = serializer.serialize(ctx, [product(title="Tee", description="Soft", images=images)])

        lines = data.decode("utf-8").split("\r\n")
        assert lines[-1] == ""
        row = lines[1]
        assert row.startswith("p1,Tee,Soft,in stock,new,9.99 USD,http://shop.test/p1,http://x/1.jpg,B,")
        assert '"http://x/2.jpg,http://x/3.jpg"' in row
        assert stats.file_size_bytes == len(data)

    def test_additional_images_always_quoted(self, facebook):
        serializer, ctx = facebook
        data, _ = serializer.serialize(ctx, [product(images=["http://x/1.jpg"])])
        row = data.decode("utf-8").split("\r\n")[1]
        fields = row.split(",")
        assert fields[HEADER.index("additional_image_link")] == '""'

    def test_every_row_has_all_columns(self, facebook):
        serializer, ctx = facebook
        data, _ = serializer.serialize(ctx, [product(title="Tee", description="Soft")])
        row = data.decode("utf-8").split("\r\n")[1]
        # additional_image_link is the only quoted field here and holds no comma
        assert len(row.split(",")) == len(HEADER)

    def test_sale_price_when_marked_down(self, facebook):
        serializer, ctx = facebook
        data, _ = serializer.serialize(ctx, [product(price=Decimal("20.00"), compare_at_price=Decimal("30.00"))])
        row = data.decode("utf-8").split("\r\n")[1].split(",")
        assert row[HEADER.index("price")] == "30.00 USD"
        assert row[HEADER.index("sale_price")] == "20.00 USD"

    def test_metadata_columns(self, facebook):
        serializer, ctx = facebook
        data, _ = serializer.serialize(ctx, [product(metadata_={"color": "red", "size": "M"})])
        row = data.decode("utf-8").split("\r\n")[1].split(",")
        assert row[HEADER.index("color")] == "red"
        assert row[HEADER.index("size")] == "M"
        assert row[HEADER.index("gender")] == ""


class TestInstagramShoppingJSON:
    def test_document_shape(self, instagram):
        serializer, ctx = instagram
        data, stats = serializer.serialize(ctx, [product(), product(id="p2", images=[])])
        doc = json.loads(data)

        assert doc["feed"] == {
            "name": "Summer Catalog",
            "channel": "instagram-shopping",
            "format": "json",
            "generated_at": "2026-03-01T06:30:00Z",
        }
        assert len(doc["products"]) == 2
        first = doc["products"][0]
        assert list(first) == [
            "id", "name", "description", "price", "sku", "brand", "category",
            "image_url", "availability", "condition", "url",
        ]
        assert first["price"] == "9.99 USD"
        assert first["name"] == "T&S"
        assert first["description"] == "a<b"
        assert first["image_url"] == ["http://x/i.jpg"]
        assert doc["products"][1]["image_url"] == []
        assert stats.products_included == 2
        assert stats.file_size_bytes == len(data)

    def test_no_html_escaping_and_raw_unicode(self, instagram):
        serializer, ctx = instagram
        data, _ = serializer.serialize(ctx, [product(title="Café <b>&</b>")])
        assert "Café <b>&</b>".encode("utf-8") in data
        assert b"\\u00e9" not in data

    def test_empty_catalog(self, instagram):
        serializer, ctx = instagram
        data, _ = serializer.serialize(ctx, [])
        assert json.loads(data)["products"] == []

    def test_streams_one_chunk_per_product(self, instagram):
        serializer, ctx = instagram
        chunks = list(serializer.stream(ctx, [product(), product(id="p2")]))
        # header, two products, footer
        assert len(chunks) == 4
        assert chunks[2].startswith(b",")
