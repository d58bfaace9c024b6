from feedforge.errors import ConfigError
from feedforge.models.feed import FeedChannel, FeedFormat
from feedforge.services.serializers.base import BaseSerializer, FeedContext, SerializeStats, format_price
from feedforge.services.serializers.facebook_csv import FacebookCatalogCSVSerializer
from feedforge.services.serializers.google_xml import GoogleShoppingXMLSerializer
from feedforge.services.serializers.instagram_json import InstagramShoppingJSONSerializer

SERIALIZERS: dict[tuple[FeedChannel, FeedFormat], type[BaseSerializer]] = {
    (FeedChannel.GOOGLE_SHOPPING, FeedFormat.XML): GoogleShoppingXMLSerializer,
    (FeedChannel.FACEBOOK_CATALOG, FeedFormat.CSV): FacebookCatalogCSVSerializer,
    (FeedChannel.INSTAGRAM_SHOPPING, FeedFormat.JSON): InstagramShoppingJSONSerializer,
}


def get_serializer(channel, format) -> BaseSerializer:
    try:
        key = (FeedChannel(channel), FeedFormat(format))
    except ValueError as e:
        raise ConfigError(str(e), code="unsupported_channel_format") from e
    serializer_cls = SERIALIZERS.get(key)
    if serializer_cls is None:
        raise ConfigError(
            f"Unsupported channel/format combination: {key[0].value}/{key[1].value}",
            code="unsupported_channel_format",
        )
    return serializer_cls()


__all__ = [
    "BaseSerializer",
    "FeedContext",
    "SerializeStats",
    "SERIALIZERS",
    "format_price",
    "get_serializer",
]
