from pydantic import BaseModel
from typing import Dict, Optional, Union, TYPE_CHECKING
from dataclasses import dataclass, field

if TYPE_CHECKING:
    from token_resolver import TokenResolver


@dataclass(frozen=True)
class StaticSource:
    """Channel served from a fixed origin base URL."""
    url: str


@dataclass(frozen=True)
class TokenizedSource:
    """Channel whose entry URL is obtained from a tokenization endpoint."""
    resolver: "TokenResolver"


BaseUrlSource = Union[StaticSource, TokenizedSource]


@dataclass(frozen=True)
class Channel:
    key: str
    source: BaseUrlSource
    origin: str
    referer: str
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_tokenized(self) -> bool:
        return isinstance(self.source, TokenizedSource)


@dataclass(frozen=True)
class RewriteContext:
    channel_key: str
    rewrite_from_url: Optional[str] = None
    token_query: str = ""


class TokenizeRequest(BaseModel):
    """JSON body posted to a tokenization endpoint."""
    url: str
