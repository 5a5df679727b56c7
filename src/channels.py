"""
Channel registry
Static description of every channel the proxy serves, built once at startup.
"""

import httpx
import logging
from typing import Dict, Iterable, List, Optional

from config import settings
from models import Channel, StaticSource, TokenizedSource
from token_resolver import TokenCache, TokenResolver

logger = logging.getLogger(__name__)


class ChannelRegistry:
    def __init__(self, channels: Iterable[Channel] = ()):
        self._channels: Dict[str, Channel] = {}
        for channel in channels:
            self.register(channel)

    def register(self, channel: Channel):
        if channel.key in self._channels:
            raise ValueError(f"Duplicate channel key: {channel.key}")
        self._channels[channel.key] = channel

    def get(self, key: Optional[str]) -> Optional[Channel]:
        if not key:
            return None
        return self._channels.get(key)

    def keys(self) -> List[str]:
        return list(self._channels)

    def __contains__(self, key: str) -> bool:
        return key in self._channels

    def __len__(self) -> int:
        return len(self._channels)


def build_default_channels(http_client: httpx.AsyncClient) -> ChannelRegistry:
    """Build the stock channel lineup. Tokenized channels share ``http_client``."""
    telefe_resolver = TokenResolver(
        tokenize_url=settings.TELEFE_TOKENIZE_URL,
        master_url=settings.TELEFE_MASTER_URL,
        http_client=http_client,
        cache=TokenCache(ttl=settings.TOKEN_CACHE_TTL),
        site_url=settings.TELEFE_SITE_URL,
    )

    registry = ChannelRegistry([
        Channel(
            key="canal13",
            source=StaticSource("https://live-01-02-eltrece.vodgc.net/eltrecetv"),
            origin="https://www.eltrecetv.com.ar",
            referer="https://www.eltrecetv.com.ar/",
        ),
        Channel(
            key="tn",
            source=StaticSource("https://live-01-01-tn.vodgc.net/TN24"),
            origin="https://www.tn.com.ar",
            referer="https://www.tn.com.ar/",
        ),
        Channel(
            key="telefe",
            source=TokenizedSource(telefe_resolver),
            origin=settings.TELEFE_SITE_URL,
            referer=settings.TELEFE_SITE_URL,
            extra_headers={
                "Host": "telefeappmitelefe1.akamaized.net",
                "DNT": "1",
            },
        ),
    ])
    logger.debug(f"Registered channels: {', '.join(registry.keys())}")
    return registry
