from pydantic_settings import BaseSettings, SettingsConfigDict

# Application version
VERSION = "0.1.0"


class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables.
    Utilizes pydantic-settings for robust validation and type-casting.
    """

    # Server Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    # Host name written into rewritten playlists (http://<PUBLIC_HOST>/<channel>/...)
    PUBLIC_HOST: str = "pi3server.local"
    LOG_LEVEL: str = "info"
    RELOAD: bool = False

    # Upstream request defaults
    DEFAULT_USER_AGENT: str = "Mozilla/5.0"
    DEFAULT_CONNECTION_TIMEOUT: float = 10.0
    DEFAULT_READ_TIMEOUT: float = 30.0
    STREAM_CHUNK_SIZE: int = 32768

    # Tokenized entry URLs are reused for this many seconds before re-authorizing
    TOKEN_CACHE_TTL: float = 60.0

    # Telefe tokenization
    TELEFE_TOKENIZE_URL: str = "https://mitelefe.com/vidya/tokenize"
    TELEFE_MASTER_URL: str = "https://telefeappmitelefe1.akamaized.net/hls/live/2037985/appmitelefe/TOK/master.m3u8"
    TELEFE_SITE_URL: str = "https://mitelefe.com"

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="",  # No prefix, read directly from .env
        extra="ignore"  # Ignore extra environment variables from container
    )


# Global settings instance
settings = Settings()
