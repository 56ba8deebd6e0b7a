"""
Age-decayed freshness scoring.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from curator.models.content import Article


# (max age in hours, multiplier); strictly decreasing
FRESHNESS_BANDS: Tuple[Tuple[float, float], ...] = (
    (6, 0.95),
    (12, 0.85),
    (24, 0.60),
    (48, 0.30),
    (72, 0.10),
)
STALE_MULTIPLIER = 0.05


@dataclass
class FreshnessResult:
    score: float
    age_hours: float
    category: str


class FreshnessScorer:
    """
    Maps publish age to a 0-100 score.

    Strict mode subtracts a continuous penalty for every hour past 24 so two
    articles in the same band still rank by age.
    """

    def __init__(self,
                 strict: bool = False,
                 min_score: float = 20.0,
                 bands: Sequence[Tuple[float, float]] = FRESHNESS_BANDS,
                 stale_multiplier: float = STALE_MULTIPLIER):
        self.strict = strict
        self.min_score = min_score
        self.bands = tuple(bands)
        self.stale_multiplier = stale_multiplier
        self.logger = logging.getLogger(__name__)

    def _multiplier(self, age_hours: float) -> float:
        for max_age, multiplier in self.bands:
            if age_hours <= max_age:
                return multiplier
        return self.stale_multiplier

    @staticmethod
    def _category(age_hours: float) -> str:
        if age_hours <= 12:
            return "fresh"
        if age_hours <= 24:
            return "recent"
        if age_hours <= 72:
            return "old"
        return "stale"

    def age_hours(self, published_at: datetime, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        if published_at.tzinfo is None:
            published_at = published_at.replace(tzinfo=timezone.utc)
        # Future timestamps count as just published
        return max(0.0, (now - published_at).total_seconds() / 3600)

    def score_age(self, age_hours: float) -> float:
        multiplier = self._multiplier(age_hours)
        if self.strict and age_hours > 24:
            multiplier -= min(0.5, (age_hours - 24) / 48)
        return round(max(0.0, multiplier) * 100, 2)

    def score(self, article: Article, now: Optional[datetime] = None) -> FreshnessResult:
        age = self.age_hours(article.published_at, now)
        return FreshnessResult(score=self.score_age(age), age_hours=age, category=self._category(age))

    def filter_fresh(self,
                     articles: List[Article],
                     now: Optional[datetime] = None) -> Tuple[List[Tuple[Article, FreshnessResult]], List[Article]]:
        """Split articles into (kept with their scores, dropped below the floor)."""
        now = now or datetime.now(timezone.utc)
        kept: List[Tuple[Article, FreshnessResult]] = []
        dropped: List[Article] = []
        for article in articles:
            result = self.score(article, now)
            if result.score >= self.min_score:
                kept.append((article, result))
            else:
                dropped.append(article)

        if dropped:
            self.logger.info(f"🕒 Dropped {len(dropped)} articles below freshness {self.min_score}")
        return kept, dropped
