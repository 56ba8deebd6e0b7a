"""
Content models for the curation pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class FeedConfig:
    """Configuration for a syndicated feed"""
    id: str
    name: str
    url: str
    category: str
    enabled: bool = True
    priority: int = 1  # Lower numbers are fetched first


@dataclass(frozen=True)
class Article:
    """Represents an article pulled from a feed."""

    title: str
    canonical_url: str
    published_at: datetime
    source_id: str
    source_domain: str
    category: str
    summary: str = ""
    content: Optional[str] = None
    author: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    feed_order: int = 0

    @property
    def dedupe_key(self) -> str:
        """Canonical URL, falling back to the title when the link is missing."""
        if self.canonical_url:
            return self.canonical_url
        return f"title:{self.title.strip().lower()}"

    @property
    def text(self) -> str:
        return f"{self.title} {self.summary} {self.content or ''}"


@dataclass
class ScoredArticle:
    """Article plus the per-factor score breakdown for one run."""

    article: Article
    freshness_score: float = 0.0
    authority_score: float = 0.0
    trend_score: float = 0.0
    relevance_score: float = 0.0
    quality_score: float = 0.0
    composite_score: float = 0.0
    reasoning: List[str] = field(default_factory=list)

    @property
    def url(self) -> str:
        return self.article.canonical_url

    @property
    def source_id(self) -> str:
        return self.article.source_id

    @property
    def domain(self) -> str:
        return self.article.source_domain

    @property
    def category(self) -> str:
        return self.article.category

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.article.title,
            "url": self.url,
            "source": self.source_id,
            "category": self.category,
            "published_at": self.article.published_at.isoformat(),
            "scores": {
                "freshness": round(self.freshness_score, 2),
                "authority": round(self.authority_score, 2),
                "trend": round(self.trend_score, 2),
                "relevance": round(self.relevance_score, 3),
                "quality": round(self.quality_score, 2),
                "composite": round(self.composite_score, 2),
            },
            "reasoning": list(self.reasoning),
        }


@dataclass
class TrustIndicators:
    established_domain: bool = False
    frequent_updates: bool = False
    author_credentials: bool = False
    factual_accuracy: bool = False


@dataclass
class SourceAuthority:
    """Reputation entry for a normalized domain"""
    domain: str
    authority_score: float
    expertise_areas: List[str] = field(default_factory=list)
    trust_indicators: TrustIndicators = field(default_factory=TrustIndicators)


@dataclass(frozen=True)
class DiversityConfig:
    """Per-bucket caps used by the diversity selector"""
    name: str
    max_per_source: int
    max_per_category: int
    max_per_domain: int
    diversity_weight: float


DEFAULT_DIVERSITY = DiversityConfig("default", 3, 5, 4, 0.3)
RELAXED_DIVERSITY = DiversityConfig("relaxed", 4, 6, 5, 0.2)
MINIMUM_DIVERSITY = DiversityConfig("minimum", 5, 7, 6, 0.1)

# Each preset is weakly looser than the one before it
DIVERSITY_PRESETS = (DEFAULT_DIVERSITY, RELAXED_DIVERSITY, MINIMUM_DIVERSITY)


def _pick(data: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return str(value).strip()
    return ""


@dataclass
class Topic:
    """Generated topic handed to rendering once validated."""

    headline: str
    summary: str
    source_url: str
    category: str = ""
    image_prompt: str = ""
    key_takeaway: Optional[str] = None
    image_url: Optional[str] = None
    alignment_score: Optional[float] = None
    low_confidence: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Topic":
        """Build a topic from backend output (camelCase or snake_case keys)."""
        if not isinstance(data, dict):
            data = {}
        return cls(
            headline=_pick(data, "headline", "title"),
            summary=_pick(data, "summary", "description"),
            source_url=_pick(data, "sourceUrl", "source_url", "url"),
            category=_pick(data, "category"),
            image_prompt=_pick(data, "imagePrompt", "image_prompt"),
            key_takeaway=_pick(data, "keyTakeaway", "key_takeaway") or None,
            image_url=_pick(data, "imageUrl", "image_url") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "headline": self.headline,
            "summary": self.summary,
            "sourceUrl": self.source_url,
            "category": self.category,
            "imagePrompt": self.image_prompt,
        }
        if self.key_takeaway:
            data["keyTakeaway"] = self.key_takeaway
        if self.image_url:
            data["imageUrl"] = self.image_url
        if self.alignment_score is not None:
            data["alignmentScore"] = round(self.alignment_score, 3)
        if self.low_confidence:
            data["lowConfidence"] = True
        return data
