from .matcher import EntityMatcher
from .strategy import (
    DEAL_KEYWORDS,
    INVESTOR_KEYWORDS,
    KeywordRecencyStrategy,
    MatchedEntity,
    MatchStrategy,
    recent_deal_strategy,
    recent_investor_strategy,
)

__all__ = [
    "EntityMatcher",
    "MatchStrategy",
    "MatchedEntity",
    "KeywordRecencyStrategy",
    "DEAL_KEYWORDS",
    "INVESTOR_KEYWORDS",
    "recent_deal_strategy",
    "recent_investor_strategy",
]
