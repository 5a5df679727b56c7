"""
HLS Channel Proxy
Reverse proxy for live HLS channels that rewrites playlists so every
sub-playlist and segment request routes back through the proxy, refreshing
tokenized entry URLs as they expire.
"""

__version__ = "0.1.0"
__description__ = "Reverse proxy for live HLS channels with playlist rewriting"
