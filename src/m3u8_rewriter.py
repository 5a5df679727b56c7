"""
Rewrites HLS playlists so every URI a player follows points back at the proxy.
"""

import re
from typing import Optional

from config import settings
from models import RewriteContext

_LINE_SPLIT_RE = re.compile(r'\r?\n')
_ABSOLUTE_URL_RE = re.compile(r'^https?://', re.IGNORECASE)


def rewrite_m3u8(
    text: str,
    channel_key: str,
    rewrite_from_url: Optional[str] = None,
    token_query: str = "",
    proxy_host: Optional[str] = None,
) -> str:
    """
    Rewrite playlist text for a channel.

    Every occurrence of ``rewrite_from_url`` (with a trailing slash) is
    replaced by ``http://<proxy_host>/<channel_key>/`` anywhere in the text,
    tag attributes included. When ``token_query`` is set, host-absolute URI
    lines are routed through the proxy and URI lines without a query get the
    token appended. Fully qualified URI lines are left alone.
    """
    host = proxy_host or settings.PUBLIC_HOST
    proxy_prefix = f"http://{host}/{channel_key}"

    if rewrite_from_url:
        search = f"{rewrite_from_url.rstrip('/')}/"
        text = text.replace(search, f"{proxy_prefix}/")

    if not token_query:
        return text

    out = []
    for line in _LINE_SPLIT_RE.split(text):
        trimmed = line.strip()
        if not trimmed or trimmed.startswith('#'):
            out.append(line)
            continue

        with_token = trimmed if '?' in trimmed else f"{trimmed}{token_query}"

        if trimmed.startswith('/'):
            out.append(f"{proxy_prefix}{with_token}")
        elif not _ABSOLUTE_URL_RE.match(trimmed):
            out.append(with_token)
        else:
            out.append(line)

    return "\n".join(out)


class M3U8Rewriter:
    def __init__(self, proxy_host: Optional[str] = None):
        self.proxy_host = proxy_host or settings.PUBLIC_HOST

    def process_playlist(self, content: str, context: RewriteContext) -> str:
        """Rewrite a playlist using the parameters captured in a RewriteContext."""
        return rewrite_m3u8(
            content,
            context.channel_key,
            rewrite_from_url=context.rewrite_from_url,
            token_query=context.token_query,
            proxy_host=self.proxy_host,
        )
