"""
Token Resolver
Obtains short-lived, token-bearing entry URLs from an upstream tokenization
endpoint and keeps the last one around for a bounded time window so that
every playlist and segment request does not re-authorize.
"""

import asyncio
import json
import httpx
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit

from config import settings
from errors import ResolutionError, UpstreamFetchError
from models import TokenizeRequest
from url_utils import is_url, find_first_url

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": "80", "https": "443"}


@dataclass(frozen=True)
class TokenEntry:
    entry_url: str
    base_dir_url: str
    token_query: str
    fetched_at: float


def derive_base_dir(url: str) -> Tuple[str, str]:
    """
    Split a tokenized entry URL into (directory URL, token query).

    https://cdn.example/hls/a/b/master.m3u8?tok=1
        -> ("https://cdn.example/hls/a/b/", "?tok=1")
    """
    parsed = urlsplit(url)
    path = parsed.path or "/"
    dir_path = path[:path.rfind('/') + 1]
    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    # Playlists reference the bare host, never ":443" or ":80"
    default_port = DEFAULT_PORTS.get(scheme)
    if default_port and netloc.endswith(f":{default_port}"):
        netloc = netloc[:-len(default_port) - 1]
    base_dir = f"{scheme}://{netloc}{dir_path}"
    token_query = f"?{parsed.query}" if parsed.query else ""
    return base_dir, token_query


class TokenCache:
    """
    Holds the most recent TokenEntry for one channel.

    The entry is swapped as a whole, so readers always see an entry URL,
    directory URL and token query that came from the same resolution.
    Expired entries are kept (a failed refresh never clears them) but are
    never handed out.
    """

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl = settings.TOKEN_CACHE_TTL if ttl is None else ttl
        self.clock = clock
        self.entry: Optional[TokenEntry] = None

    def get_valid(self) -> Optional[TokenEntry]:
        entry = self.entry
        if entry is not None and self.clock() - entry.fetched_at < self.ttl:
            return entry
        return None

    def store(self, entry_url: str, fetched_at: Optional[float] = None) -> TokenEntry:
        base_dir_url, token_query = derive_base_dir(entry_url)
        entry = TokenEntry(
            entry_url=entry_url,
            base_dir_url=base_dir_url,
            token_query=token_query,
            fetched_at=self.clock() if fetched_at is None else fetched_at,
        )
        self.entry = entry
        return entry


class TokenResolver:
    def __init__(
        self,
        tokenize_url: str,
        master_url: str,
        http_client: httpx.AsyncClient,
        cache: Optional[TokenCache] = None,
        site_url: Optional[str] = None,
        user_agent: Optional[str] = None,
    ):
        self.tokenize_url = tokenize_url
        self.master_url = master_url
        self.http_client = http_client
        self.cache = cache or TokenCache()
        self.site_url = site_url or settings.TELEFE_SITE_URL
        self.user_agent = user_agent or settings.DEFAULT_USER_AGENT
        # Serializes refreshes so concurrent cache misses share one upstream call
        self._lock = asyncio.Lock()

    def _headers(self) -> Dict[str, str]:
        # The tokenizer only answers requests that look like first-party browser traffic
        return {
            "Content-Type": "application/json",
            "Accept": "application/json, text/plain, */*",
            "Origin": self.site_url,
            "Referer": self.site_url,
            "User-Agent": self.user_agent,
        }

    async def resolve(self) -> TokenEntry:
        """Return a valid TokenEntry, tokenizing again if the cached one expired."""
        entry = self.cache.get_valid()
        if entry:
            logger.debug(f"Using cached tokenized URL for {self.master_url}")
            return entry

        async with self._lock:
            entry = self.cache.get_valid()
            if entry:
                return entry
            return await self._tokenize()

    async def resolve_entry_url(self) -> str:
        entry = await self.resolve()
        return entry.entry_url

    async def _tokenize(self) -> TokenEntry:
        now = self.cache.clock()
        logger.info(f"Requesting tokenized URL from {self.tokenize_url}")

        body = TokenizeRequest(url=self.master_url).model_dump()
        try:
            response = await self.http_client.post(
                self.tokenize_url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise UpstreamFetchError(f"tokenize request failed: {e}") from e

        tokenized_url = self._extract_url(response)

        # Status is checked only after the body was inspected; error bodies
        # sometimes carry a URL, which is reported but never trusted.
        if not response.is_success:
            if tokenized_url:
                logger.warning(
                    f"Tokenize returned {response.status_code} with url {tokenized_url}")
            raise ResolutionError(
                f"tokenize failed: {response.status_code}",
                status_code=response.status_code,
                diagnostic_url=tokenized_url,
            )
        if not tokenized_url:
            raise ResolutionError("no usable url", status_code=response.status_code)

        entry = self.cache.store(tokenized_url, fetched_at=now)
        logger.info(f"Tokenized entry URL refreshed, base dir {entry.base_dir_url}")
        return entry

    def _extract_url(self, response: httpx.Response) -> Optional[str]:
        content_type = response.headers.get("content-type", "")

        if "application/json" in content_type:
            try:
                return find_first_url(response.json())
            except ValueError:
                logger.warning("Tokenize response declared JSON but could not be decoded")
                return None

        # Some upstreams send JSON labelled as text, others a bare URL
        text = response.text
        try:
            return find_first_url(json.loads(text))
        except ValueError:
            text = text.strip()
            return text if is_url(text) else None
