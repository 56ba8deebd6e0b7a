"""
Source ranking for credibility, relevance and trend weighting.

Combines a static domain authority table with signals derived from the
current batch (trending terms, keyword relevance, estimated quality) into a
single composite score per article.
"""

import json
import logging
import math
import os
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from curator.models.content import Article, ScoredArticle, SourceAuthority, TrustIndicators
from curator.services.freshness_scorer import FreshnessResult
from curator.services.url_validator import extract_domain
from curator.utils.text_analysis import contains_phrase, extract_keywords


DEFAULT_RELEVANCE_KEYWORDS = (
    "artificial intelligence", "machine learning", "neural", "ai", "ml",
    "algorithm", "automation", "robot", "deep learning", "nlp",
    "computer vision", "generative", "llm", "chatbot", "gpt",
)

# Share of the 0-100 composite allotted to each factor
DEFAULT_WEIGHTS = {
    "authority": 25.0,
    "freshness": 25.0,
    "relevance": 20.0,
    "trend": 15.0,
    "quality": 15.0,
}

MAX_TREND_POINTS = 15


@dataclass
class TrendingTerm:
    term: str
    recent_count: int
    older_count: int
    growth_rate: float


class SourceRankingService:
    """
    Scores articles by source authority, freshness, relevance, trend and quality.
    """

    def __init__(self,
                 config_path: Optional[str] = None,
                 weights: Optional[Dict[str, float]] = None,
                 relevance_keywords: Sequence[str] = DEFAULT_RELEVANCE_KEYWORDS):
        self.logger = logging.getLogger(__name__)

        if config_path is None:
            config_path = os.path.join(
                os.path.dirname(os.path.dirname(__file__)),
                'config',
                'sources_authority.json'
            )

        self.authority_config = self._load_authority_config(config_path)
        self.source_scores, self.source_tiers = self._build_source_score_map()
        self.expertise: Dict[str, List[str]] = self.authority_config.get('expertise', {})

        settings = self.authority_config['config']
        self.default_score = float(settings.get('default_score', 60))
        self.max_score = float(settings.get('max_score', 100))
        self.edu_bonus = float(settings.get('edu_bonus', 5))
        self.gov_bonus = float(settings.get('gov_bonus', 8))
        self.research_bonus = float(settings.get('research_subdomain_bonus', 3))
        self.established_threshold = float(settings.get('established_threshold', 80))
        self.factual_threshold = float(settings.get('factual_accuracy_threshold', 85))

        self.weights = dict(DEFAULT_WEIGHTS)
        if weights:
            self.weights.update(weights)
        self.relevance_keywords = tuple(k.lower() for k in relevance_keywords)

        self.logger.info(f"Source ranking service initialized with {len(self.source_scores)} scored sources")

    def _load_authority_config(self, config_path: str) -> Dict[str, Any]:
        """Load the source authority configuration."""
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config = json.load(f)
            self.logger.info(f"Loaded source authority config from {config_path}")
            return config
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load source authority config: {e}")
            return {
                'config': {
                    'default_score': 60,
                    'max_score': 100,
                    'edu_bonus': 5,
                    'gov_bonus': 8,
                    'research_subdomain_bonus': 3,
                    'established_threshold': 80,
                    'factual_accuracy_threshold': 85,
                }
            }

    def _build_source_score_map(self) -> Tuple[Dict[str, float], Dict[str, Dict[str, Any]]]:
        """Map each domain to its score and the tier it came from."""
        scores: Dict[str, float] = {}
        tiers: Dict[str, Dict[str, Any]] = {}
        for tier_name, tier_data in self.authority_config.items():
            if not tier_name.startswith('tier_'):
                continue
            for domain, score in tier_data.get('sources', {}).items():
                key = domain.lower()
                scores[key] = float(score)
                tiers[key] = tier_data
        return scores, tiers

    def _lookup(self, domain: str) -> Tuple[Optional[str], Optional[float]]:
        """Exact domain first, then progressively shorter parents."""
        parts = domain.split('.')
        for i in range(len(parts) - 1):
            candidate = '.'.join(parts[i:])
            if candidate in self.source_scores:
                return candidate, self.source_scores[candidate]
        return None, None

    def get_source_authority(self, url_or_domain: str) -> SourceAuthority:
        domain = extract_domain(url_or_domain) if '://' in url_or_domain else url_or_domain.lower()
        if domain.startswith('www.'):
            domain = domain[4:]
        if not domain:
            return SourceAuthority(domain='unknown', authority_score=self.default_score)

        matched, base = self._lookup(domain)
        score = base if base is not None else self.default_score

        if domain.endswith('.edu'):
            score += self.edu_bonus
        if domain.endswith('.gov'):
            score += self.gov_bonus
        if domain.startswith('research.'):
            score += self.research_bonus
        score = min(self.max_score, score)

        tier = self.source_tiers.get(matched, {}) if matched else {}
        indicators = TrustIndicators(
            established_domain=score >= self.established_threshold,
            frequent_updates=bool(tier.get('frequent_updates', False)),
            author_credentials=bool(tier.get('author_credentials', False)) or domain.endswith(('.edu', '.gov')),
            factual_accuracy=score >= self.factual_threshold,
        )
        expertise = self.expertise.get(matched or domain, ['technology', 'general'])
        return SourceAuthority(domain=domain, authority_score=score,
                               expertise_areas=list(expertise), trust_indicators=indicators)

    def analyze_trends(self,
                       articles: Sequence[Article],
                       min_recent: int = 2,
                       min_growth: float = 1.5,
                       limit: int = 10) -> List[TrendingTerm]:
        """
        Terms disproportionately frequent in the newer half of the batch.

        Each article contributes a term at most once.
        """
        if len(articles) < 2:
            return []

        ordered = sorted(articles, key=lambda a: a.published_at, reverse=True)
        middle = math.ceil(len(ordered) / 2)
        recent_counts = Counter(t for a in ordered[:middle] for t in extract_keywords(f"{a.title} {a.summary}"))
        older_counts = Counter(t for a in ordered[middle:] for t in extract_keywords(f"{a.title} {a.summary}"))

        trending: List[TrendingTerm] = []
        for term, recent in recent_counts.items():
            if recent < min_recent:
                continue
            older = older_counts.get(term, 0)
            growth = recent / (older + 1)
            if growth >= min_growth:
                trending.append(TrendingTerm(term, recent, older, round(growth, 2)))

        trending.sort(key=lambda t: (-t.growth_rate, -t.recent_count, t.term))
        if trending:
            self.logger.info(f"📈 Trending: {', '.join(t.term for t in trending[:limit])}")
        return trending[:limit]

    def trend_points(self, article: Article, trending: Iterable[TrendingTerm]) -> Tuple[float, List[str]]:
        text = article.text.lower()
        matched = [t.term for t in trending if contains_phrase(text, t.term)]
        return float(min(MAX_TREND_POINTS, 3 * len(matched))), matched

    def relevance(self, article: Article) -> float:
        """Keyword density against the domain keyword list, 0-1; title hits count double."""
        if not self.relevance_keywords:
            return 0.0
        title_hits = sum(1 for k in self.relevance_keywords if contains_phrase(article.title, k))
        body = f"{article.summary} {article.content or ''}"
        body_hits = sum(1 for k in self.relevance_keywords if contains_phrase(body, k))
        matches = 2 * title_hits + body_hits
        raw = matches / len(self.relevance_keywords) * 100 + matches * 10
        return min(100.0, raw) / 100

    def estimate_quality(self, article: Article) -> float:
        score = 50.0
        title_length = len(article.title)
        if 50 < title_length < 120:
            score += 10
        if '?' in article.title or '!' in article.title:
            score += 5
        words = len((article.content or article.summary).split())
        if words > 200:
            score += 15
        if words > 500:
            score += 10
        if article.author:
            score += 10
        if article.categories:
            score += 5
        return min(100.0, score)

    def composite(self, authority: float, freshness: float, relevance: float, trend: float, quality: float) -> float:
        """Weighted 0-100 blend; each factor is normalized to 0-1 first."""
        w = self.weights
        return round(
            w['authority'] * min(1.0, authority / 100)
            + w['freshness'] * min(1.0, freshness / 100)
            + w['relevance'] * min(1.0, relevance)
            + w['trend'] * min(1.0, trend / MAX_TREND_POINTS)
            + w['quality'] * min(1.0, quality / 100),
            4,
        )

    def score_article(self,
                      article: Article,
                      freshness: FreshnessResult,
                      trending: Sequence[TrendingTerm] = (),
                      quality: Optional[float] = None) -> ScoredArticle:
        authority = self.get_source_authority(article.canonical_url or article.source_domain)
        relevance = self.relevance(article)
        trend, matched_terms = self.trend_points(article, trending)
        quality_score = self.estimate_quality(article) if quality is None else quality

        reasoning = [
            f"Source authority: {authority.authority_score:.0f}/100 ({authority.domain})",
            f"Freshness: {freshness.score:.0f}/100 ({freshness.age_hours:.1f}h, {freshness.category})",
            f"Relevance: {relevance:.0%}",
            f"Estimated quality: {quality_score:.0f}/100",
        ]
        if matched_terms:
            reasoning.append(f"Trending: {', '.join(matched_terms)}")

        return ScoredArticle(
            article=article,
            freshness_score=freshness.score,
            authority_score=authority.authority_score,
            trend_score=trend,
            relevance_score=relevance,
            quality_score=quality_score,
            composite_score=self.composite(authority.authority_score, freshness.score, relevance, trend, quality_score),
            reasoning=reasoning,
        )

    def score_articles(self, scored_freshness: Sequence[Tuple[Article, FreshnessResult]]) -> List[ScoredArticle]:
        """Score a batch, ranked by composite score with feed order breaking ties."""
        trending = self.analyze_trends([a for a, _ in scored_freshness])
        scored = [self.score_article(article, freshness, trending) for article, freshness in scored_freshness]
        scored.sort(key=lambda s: (-s.composite_score, s.article.feed_order))

        if scored:
            top = scored[0]
            self.logger.info(
                f"⚖️ Scored {len(scored)} articles; top {top.composite_score:.1f}: {top.article.title[:60]}"
            )
        return scored

    def rescore_quality(self, scored: ScoredArticle, quality: float) -> ScoredArticle:
        """Replace the quality factor (e.g. after full-text extraction) and recompute the composite."""
        scored.quality_score = quality
        scored.composite_score = self.composite(
            scored.authority_score, scored.freshness_score, scored.relevance_score, scored.trend_score, quality
        )
        scored.reasoning.append(f"Content quality: {quality:.0f}/100")
        return scored
