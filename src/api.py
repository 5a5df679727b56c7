from fastapi import FastAPI, Request
from fastapi.responses import Response, PlainTextResponse
from contextlib import asynccontextmanager
import logging

from proxy_manager import ProxyManager, CORS_HEADERS
from errors import ProxyError, UnknownChannelError
from config import VERSION

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "HEAD", "OPTIONS"]

proxy_manager = ProxyManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    logger.info(f"hls-channel-proxy v{VERSION} starting up...")
    await proxy_manager.start()

    yield

    # Shutdown
    logger.info("hls-channel-proxy shutting down...")
    await proxy_manager.stop()


# Every first path segment is a channel key, so the docs routes stay off
app = FastAPI(
    title="hls-channel-proxy",
    version=VERSION,
    description="Reverse proxy for live HLS channels with playlist rewriting and token refresh",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)


def error_response(status_code: int, message: str) -> Response:
    return PlainTextResponse(message, status_code=status_code, headers=CORS_HEADERS)


def channel_path(request: Request, channel_key: str) -> str:
    """Request path, still percent-encoded, with the leading /<channel_key> removed"""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    return path[len(channel_key) + 1:]


@app.api_route("/", methods=PROXY_METHODS)
async def root(request: Request):
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=CORS_HEADERS)
    return error_response(404, "Unknown channel")


@app.api_route("/{channel_key}", methods=PROXY_METHODS)
@app.api_route("/{channel_key}/{path:path}", methods=PROXY_METHODS)
async def proxy_channel(request: Request, channel_key: str, path: str = ""):
    """Serve a channel playlist or media file through the proxy"""
    # Preflight never touches the registry or the upstream
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=CORS_HEADERS)

    try:
        channel = proxy_manager.get_channel(channel_key)
        return await proxy_manager.proxy_request(
            channel,
            channel_path(request, channel_key),
            query=request.url.query,
            method=request.method,
            user_agent=request.headers.get("user-agent"),
            range_header=request.headers.get("range"),
        )
    except UnknownChannelError:
        logger.debug(f"Request for unknown channel {channel_key}")
        return error_response(404, "Unknown channel")
    except ProxyError as e:
        logger.error(f"Proxy error for channel {channel_key}: {e}")
        return error_response(500, f"Proxy error: {e}")
    except Exception as e:
        logger.exception(f"Unexpected error proxying channel {channel_key}: {e}")
        return error_response(500, f"Proxy error: {e}")
