"""
Proxy Manager
Routes channel requests to their upstream origin. Playlists are buffered and
rewritten so nested URIs come back through the proxy; everything else is
relayed byte-for-byte.
"""

import httpx
import logging
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlsplit
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

from config import settings
from channels import ChannelRegistry, build_default_channels
from errors import StreamError, UnknownChannelError, UpstreamFetchError
from m3u8_rewriter import M3U8Rewriter
from models import Channel, RewriteContext

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}

PLAYLIST_MEDIA_TYPE = "application/vnd.apple.mpegurl"

# Requests for these paths on a tokenized channel are answered with the entry URL itself
ENTRY_PATHS = ("", "/", "/index.m3u8", "/master.m3u8")

# Upstream headers relayed on media passthrough
PASSTHROUGH_HEADERS = (
    "content-type",
    "content-length",
    "content-encoding",
    "content-range",
    "accept-ranges",
)


@dataclass(frozen=True)
class UpstreamTarget:
    url: str
    rewrite: RewriteContext


def is_manifest_response(content_type: str, target_url: str) -> bool:
    """Playlist if the upstream says mpegurl or the target path ends in .m3u8"""
    if "mpegurl" in (content_type or "").lower():
        return True
    try:
        return urlsplit(target_url).path.endswith(".m3u8")
    except ValueError:
        return False


class ProxyManager:
    def __init__(
        self,
        registry: Optional[ChannelRegistry] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        proxy_host: Optional[str] = None,
    ):
        # One pooled client for origins and tokenization endpoints alike
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=settings.DEFAULT_CONNECTION_TIMEOUT,
                read=settings.DEFAULT_READ_TIMEOUT,
                write=10.0,
                pool=10.0
            ),
            follow_redirects=True,
            max_redirects=10,
            limits=httpx.Limits(
                max_keepalive_connections=20,
                max_connections=100,
                keepalive_expiry=30.0
            )
        )
        self.registry = registry or build_default_channels(self.http_client)
        self.rewriter = M3U8Rewriter(proxy_host)

    async def start(self):
        logger.info(
            f"Proxy manager started with channels: {', '.join(self.registry.keys())}")

    async def stop(self):
        await self.http_client.aclose()
        logger.info("Proxy manager stopped")

    def get_channel(self, channel_key: str) -> Channel:
        channel = self.registry.get(channel_key)
        if channel is None:
            raise UnknownChannelError(channel_key)
        return channel

    async def resolve_target(self, channel: Channel, path: str, query: str = "") -> UpstreamTarget:
        """
        Work out the upstream URL for ``path`` (the request path with the
        channel prefix removed) and how the resulting playlist gets rewritten.
        """
        if not channel.is_tokenized:
            base_url = channel.source.url
            url = f"{base_url}{path}"
            if query:
                url += f"?{query}"
            return UpstreamTarget(url, RewriteContext(channel.key, base_url, ""))

        # Entry URL, directory and token query all come from one snapshot
        entry = await channel.source.resolver.resolve()
        rewrite = RewriteContext(channel.key, entry.base_dir_url, entry.token_query)

        if path in ENTRY_PATHS:
            return UpstreamTarget(entry.entry_url, rewrite)

        # A token supplied by the client wins over the cached one
        token_query = f"?{query}" if query else entry.token_query
        url = f"{entry.base_dir_url.rstrip('/')}{path}{token_query}"
        return UpstreamTarget(url, rewrite)

    def build_upstream_headers(
        self,
        channel: Channel,
        user_agent: Optional[str] = None,
        range_header: Optional[str] = None
    ) -> Dict[str, str]:
        headers = {
            "Origin": channel.origin,
            "Referer": channel.referer,
            "User-Agent": user_agent or settings.DEFAULT_USER_AGENT,
        }
        if range_header:
            headers["Range"] = range_header
        headers.update(channel.extra_headers)
        return headers

    async def proxy_request(
        self,
        channel: Channel,
        path: str,
        query: str = "",
        method: str = "GET",
        user_agent: Optional[str] = None,
        range_header: Optional[str] = None,
    ) -> Response:
        target = await self.resolve_target(channel, path, query)
        headers = self.build_upstream_headers(channel, user_agent, range_header)

        logger.info(f"Proxying /{channel.key}{path} -> {target.url}")
        request = self.http_client.build_request("GET", target.url, headers=headers)
        try:
            upstream = await self.http_client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise UpstreamFetchError(f"upstream request failed: {e}") from e

        if is_manifest_response(upstream.headers.get("content-type", ""), target.url):
            return await self._playlist_response(upstream, target)

        return self._passthrough_response(upstream, target, method)

    async def _playlist_response(self, upstream: httpx.Response, target: UpstreamTarget) -> Response:
        try:
            await upstream.aread()
        except httpx.HTTPError as e:
            raise UpstreamFetchError(f"error reading playlist: {e}") from e
        finally:
            await upstream.aclose()

        if not upstream.is_success:
            logger.warning(
                f"Playlist upstream returned {upstream.status_code} for {target.url}")

        content = self.rewriter.process_playlist(upstream.text, target.rewrite)
        logger.debug(
            f"Rewrote playlist for {target.rewrite.channel_key} ({len(content)} chars)")

        return Response(
            content=content,
            status_code=200,
            media_type=PLAYLIST_MEDIA_TYPE,
            headers={**CORS_HEADERS, "Cache-Control": "no-cache"},
        )

    def _passthrough_response(self, upstream: httpx.Response, target: UpstreamTarget, method: str) -> Response:
        response_headers = dict(CORS_HEADERS)
        for name in PASSTHROUGH_HEADERS:
            value = upstream.headers.get(name)
            if value:
                response_headers[name] = value

        if method == "HEAD":
            return Response(
                status_code=upstream.status_code,
                headers=response_headers,
                background=BackgroundTask(upstream.aclose),
            )

        chunk_size = settings.STREAM_CHUNK_SIZE

        async def generate():
            bytes_served = 0
            try:
                async for chunk in upstream.aiter_raw(chunk_size):
                    bytes_served += len(chunk)
                    yield chunk
            except httpx.HTTPError as e:
                # Headers are already on the wire; all we can do is cut the response
                logger.warning(
                    f"Upstream stream error for {target.url} after {bytes_served} bytes: {e}")
                raise StreamError(str(e)) from e
            finally:
                await upstream.aclose()

        return StreamingResponse(
            generate(),
            status_code=upstream.status_code,
            headers=response_headers,
            background=BackgroundTask(upstream.aclose),
        )
