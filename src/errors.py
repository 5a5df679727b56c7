from typing import Optional


class ProxyError(Exception):
    """Base class for errors surfaced to proxy clients"""


class UnknownChannelError(ProxyError):
    def __init__(self, channel_key: str):
        super().__init__(f"Unknown channel: {channel_key}")
        self.channel_key = channel_key


class ResolutionError(ProxyError):
    """The tokenization endpoint failed or returned nothing usable."""

    def __init__(self, message: str, status_code: Optional[int] = None, diagnostic_url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        # URL found in a failed response body; informational only, never cached
        self.diagnostic_url = diagnostic_url


class UpstreamFetchError(ProxyError):
    """Network failure reaching the origin or the tokenization endpoint."""


class StreamError(ProxyError):
    """Relaying a media body failed after response headers were committed."""
