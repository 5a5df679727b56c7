import pytest
import httpx
from urllib.parse import urlsplit
from fastapi.testclient import TestClient

# Add src to path
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

import api
from api import app
from channels import ChannelRegistry
from models import Channel, StaticSource, TokenizedSource
from proxy_manager import ProxyManager
from token_resolver import TokenCache, TokenResolver

pytestmark = pytest.mark.integration

PROXY_HOST = "pi3server.local"


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def stream_response(status_code, body, headers=None):
    """Unread response body, the way a network transport hands it over"""
    headers = {"content-length": str(len(body)), **(headers or {})}
    return httpx.Response(status_code, stream=httpx.ByteStream(body), headers=headers)


class LiveOrigin:
    """
    Simulates a tokenizing CDN: every tokenize call issues a new token and
    media is only served when the request carries the current one.
    """

    def __init__(self):
        self.generation = 0
        self.requests = []

    @property
    def token(self):
        return f"hdnts=gen{self.generation}"

    def base_dir(self):
        return f"https://cdn.example/live/g{self.generation}/"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = urlsplit(str(request.url))

        if request.method == "POST":
            self.generation += 1
            return httpx.Response(
                200,
                text=f'{{"result": {{"tokenized_url": "{self.base_dir()}master.m3u8?{self.token}"}}}}',
                headers={"content-type": "text/plain"},
            )

        if url.netloc == "static.example":
            if url.path.endswith(".m3u8"):
                return httpx.Response(
                    200,
                    text="#EXTM3U\n#EXTINF:4.0,\nhttps://static.example/base/chunk1.ts\n#EXTINF:4.0,\nchunk2.ts\n",
                    headers={"content-type": "application/x-mpegurl"},
                )
            return stream_response(200, b"static-media", headers={"content-type": "video/mp2t"})

        if url.query != self.token:
            return stream_response(403, b"token mismatch")

        if url.path.endswith("master.m3u8"):
            body = "\n".join([
                "#EXTM3U",
                '#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="a",URI="' + self.base_dir() + 'audio/index.m3u8"',
                "#EXT-X-STREAM-INF:BANDWIDTH=2000000",
                "video/index.m3u8",
            ])
            return httpx.Response(200, text=body, headers={"content-type": "application/vnd.apple.mpegurl"})

        if url.path.endswith("index.m3u8"):
            body = "\r\n".join([
                "#EXTM3U",
                "#EXTINF:6.0,",
                "seg1.ts",
                "#EXTINF:6.0,",
                url.path.rsplit("/", 1)[0] + "/seg2.ts",
            ])
            return httpx.Response(200, text=body, headers={"content-type": "application/vnd.apple.mpegurl"})

        return stream_response(200, b"media:" + url.path.encode(), headers={"content-type": "video/mp2t"})

    def count(self, method):
        return len([r for r in self.requests if r.method == method])


def proxy_path(url):
    """Turn a rewritten absolute proxy URL into a request path for the TestClient"""
    parsed = urlsplit(url)
    assert parsed.netloc == PROXY_HOST
    return f"{parsed.path}?{parsed.query}" if parsed.query else parsed.path


class TestFullIntegration:
    """Test full request flows through the API with fake upstreams"""

    @pytest.fixture
    def origin(self):
        return LiveOrigin()

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def client(self, origin, clock, monkeypatch):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(origin))
        resolver = TokenResolver(
            tokenize_url="https://site.example/vidya/tokenize",
            master_url="https://cdn.example/live/TOK/master.m3u8",
            http_client=http_client,
            cache=TokenCache(ttl=60.0, clock=clock),
            site_url="https://site.example",
        )
        registry = ChannelRegistry([
            Channel("static", StaticSource("https://static.example/base"),
                    "https://static.example", "https://static.example/"),
            Channel("live", TokenizedSource(resolver),
                    "https://site.example", "https://site.example",
                    extra_headers={"DNT": "1"}),
        ])
        monkeypatch.setattr(api, "proxy_manager", ProxyManager(
            registry=registry, http_client=http_client, proxy_host=PROXY_HOST))
        return TestClient(app)

    def test_tokenized_channel_walkthrough(self, client, origin):
        # 1. Master playlist
        master = client.get("/live/master.m3u8")
        assert master.status_code == 200
        lines = master.text.split("\n")
        assert lines[1] == '#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="a",URI="http://pi3server.local/live/audio/index.m3u8"'
        assert lines[3] == "video/index.m3u8?hdnts=gen1"

        # 2. Variant playlist, as a player would resolve it relative to the master
        variant = client.get("/live/video/index.m3u8?hdnts=gen1")
        assert variant.status_code == 200
        assert variant.text == "\n".join([
            "#EXTM3U",
            "#EXTINF:6.0,",
            "seg1.ts?hdnts=gen1",
            "#EXTINF:6.0,",
            "http://pi3server.local/live/live/g1/video/seg2.ts?hdnts=gen1",
        ])

        # 3. Segments, relative and host-absolute
        seg1 = client.get("/live/video/seg1.ts?hdnts=gen1")
        assert seg1.status_code == 200
        assert seg1.content == b"media:/live/g1/video/seg1.ts"

        # 4. Audio rendition rewritten without a query picks up the cached token
        audio = client.get(proxy_path(lines[1].split('URI="')[1].rstrip('"')))
        assert audio.status_code == 200
        assert "seg1.ts?hdnts=gen1" in audio.text

        assert origin.count("POST") == 1

    def test_token_refresh_after_expiry(self, client, origin, clock):
        assert client.get("/live/").status_code == 200
        assert origin.count("POST") == 1

        clock.now = 30.0
        assert client.get("/live/video/index.m3u8").status_code == 200
        assert origin.count("POST") == 1

        clock.now = 61.0
        refreshed = client.get("/live/video/index.m3u8")
        assert refreshed.status_code == 200
        assert "seg1.ts?hdnts=gen2" in refreshed.text
        assert origin.count("POST") == 2
        assert str(origin.requests[-1].url) == "https://cdn.example/live/g2/video/index.m3u8?hdnts=gen2"

    def test_stale_client_token_is_passed_through(self, client, origin, clock):
        client.get("/live/master.m3u8")
        clock.now = 61.0

        # Client keeps using the token from the old playlist; it wins over the cache
        response = client.get("/live/video/seg1.ts?hdnts=gen1")

        assert response.status_code == 403
        assert response.content == b"token mismatch"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_static_channel_walkthrough(self, client, origin):
        playlist = client.get("/static/live.m3u8")

        assert playlist.status_code == 200
        assert playlist.headers["content-type"] == "application/vnd.apple.mpegurl"
        assert playlist.text == "#EXTM3U\n#EXTINF:4.0,\nhttp://pi3server.local/static/chunk1.ts\n#EXTINF:4.0,\nchunk2.ts\n"

        chunk = client.get(proxy_path("http://pi3server.local/static/chunk1.ts"))
        assert chunk.status_code == 200
        assert chunk.content == b"static-media"
        assert str(origin.requests[-1].url) == "https://static.example/base/chunk1.ts"
        assert origin.count("POST") == 0

    def test_outbound_headers_for_tokenized_channel(self, client, origin):
        client.get("/live/master.m3u8", headers={"User-Agent": "Player/2.1"})

        get = [r for r in origin.requests if r.method == "GET"][0]
        assert get.headers["user-agent"] == "Player/2.1"
        assert get.headers["origin"] == "https://site.example"
        assert get.headers["dnt"] == "1"

        post = [r for r in origin.requests if r.method == "POST"][0]
        assert post.headers["origin"] == "https://site.example"
        assert post.headers["content-type"] == "application/json"


if __name__ == "__main__":
    pytest.main([__file__])
