"""
Diversity-constrained article selection.

Greedy selection of the top K articles by a diversity-penalized score under
per-source, per-category and per-domain caps. When a preset yields too few
articles, the whole selection is retried under progressively looser presets.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from curator.models.content import DIVERSITY_PRESETS, DiversityConfig, ScoredArticle
from curator.services.category_registry import normalize_category
from curator.services.url_validator import extract_domain


@dataclass
class Rejection:
    scored: ScoredArticle
    reason: str


@dataclass
class SelectionResult:
    selected: List[ScoredArticle]
    rejected: List[Rejection]
    config: DiversityConfig
    diversity_score: int
    meets_target: bool = False
    meets_minimum: bool = False
    attempts: List[Tuple[str, int]] = field(default_factory=list)

    @property
    def preset(self) -> str:
        return self.config.name

    def distribution(self) -> Dict[str, Dict[str, int]]:
        out: Dict[str, Dict[str, int]] = {"sources": {}, "categories": {}, "domains": {}}
        for s in self.selected:
            source, category, domain = bucket_keys(s)
            out["sources"][source] = out["sources"].get(source, 0) + 1
            out["categories"][category] = out["categories"].get(category, 0) + 1
            out["domains"][domain] = out["domains"].get(domain, 0) + 1
        return out


def normalize_domain(domain_or_url: str) -> str:
    domain = extract_domain(domain_or_url) if '://' in domain_or_url else domain_or_url.lower()
    for prefix in ('www.', 'blog.', 'news.'):
        if domain.startswith(prefix):
            domain = domain[len(prefix):]
    return domain


def bucket_keys(scored: ScoredArticle) -> Tuple[str, str, str]:
    article = scored.article
    source = (article.source_id or 'unknown').strip().lower()
    category = normalize_category(article.category) or 'uncategorized'
    domain = normalize_domain(article.source_domain or article.canonical_url) or source
    return source, category, domain


def diversity_penalty(source_count: int, category_count: int, domain_count: int, weight: float) -> float:
    """Multiplicative penalty in [0, 1] that shrinks as bucket counts grow."""
    penalty = 1.0
    if source_count > 0:
        penalty *= max(0.0, 1 - weight * 0.5 * source_count)
    if category_count > 2:
        penalty *= max(0.0, 1 - weight * 0.3 * (category_count - 2))
    if domain_count > 1:
        penalty *= max(0.0, 1 - weight * 0.4 * (domain_count - 1))
    return penalty


def calculate_diversity_score(selected: Sequence[ScoredArticle]) -> int:
    """0-100 blend of unique sources, categories and domains per selected article."""
    n = len(selected)
    if n == 0:
        return 0
    keys = [bucket_keys(s) for s in selected]
    sources = len({k[0] for k in keys})
    categories = len({k[1] for k in keys})
    domains = len({k[2] for k in keys})
    score = sources / n * 100 * 0.4 + categories / n * 100 * 0.3 + domains / n * 100 * 0.3
    return min(100, round(score))


class DiversitySelector:
    """
    Selects a bounded, diverse subset of scored articles.
    """

    def __init__(self,
                 presets: Sequence[DiversityConfig] = DIVERSITY_PRESETS,
                 target_count: int = 7,
                 minimum_count: int = 4):
        if not presets:
            raise ValueError("At least one diversity preset is required")
        self.presets = tuple(presets)
        self.target_count = target_count
        self.minimum_count = minimum_count
        self.logger = logging.getLogger(__name__)

    def select(self,
               scored: Sequence[ScoredArticle],
               max_articles: int,
               config: Optional[DiversityConfig] = None) -> SelectionResult:
        """
        Greedy selection under one preset.

        Each step drops candidates whose buckets are full, then takes the
        highest penalized score (earlier feed order wins ties).
        """
        config = config or self.presets[0]
        source_counts: Dict[str, int] = defaultdict(int)
        category_counts: Dict[str, int] = defaultdict(int)
        domain_counts: Dict[str, int] = defaultdict(int)

        remaining = sorted(scored, key=lambda s: (-s.composite_score, s.article.feed_order))
        selected: List[ScoredArticle] = []
        rejected: List[Rejection] = []

        while remaining and len(selected) < max_articles:
            best_index = -1
            best_score = 0.0
            still_open: List[ScoredArticle] = []
            for candidate in remaining:
                source, category, domain = bucket_keys(candidate)
                if source_counts[source] >= config.max_per_source:
                    rejected.append(Rejection(candidate, f"source cap reached ({source}: {config.max_per_source})"))
                    continue
                if category_counts[category] >= config.max_per_category:
                    rejected.append(Rejection(candidate, f"category cap reached ({category}: {config.max_per_category})"))
                    continue
                if domain_counts[domain] >= config.max_per_domain:
                    rejected.append(Rejection(candidate, f"domain cap reached ({domain}: {config.max_per_domain})"))
                    continue

                penalized = candidate.composite_score * diversity_penalty(
                    source_counts[source], category_counts[category], domain_counts[domain], config.diversity_weight
                )
                # Strict comparison keeps the earlier candidate on ties
                if best_index < 0 or penalized > best_score:
                    best_index = len(still_open)
                    best_score = penalized
                still_open.append(candidate)

            if best_index < 0:
                remaining = still_open
                break

            chosen = still_open.pop(best_index)
            source, category, domain = bucket_keys(chosen)
            source_counts[source] += 1
            category_counts[category] += 1
            domain_counts[domain] += 1
            selected.append(chosen)
            remaining = still_open

        for leftover in remaining:
            rejected.append(Rejection(leftover, f"not selected: limit of {max_articles} reached"))

        return SelectionResult(
            selected=selected,
            rejected=rejected,
            config=config,
            diversity_score=calculate_diversity_score(selected),
        )

    def select_progressive(self,
                           scored: Sequence[ScoredArticle],
                           max_articles: int,
                           target_count: Optional[int] = None,
                           minimum_count: Optional[int] = None) -> SelectionResult:
        """
        Try each preset in order, accepting the first that reaches the target.
        """
        target = min(target_count or self.target_count, max_articles)
        minimum = min(minimum_count or self.minimum_count, target)
        attempts: List[Tuple[str, int]] = []

        result: Optional[SelectionResult] = None
        for config in self.presets:
            result = self.select(scored, max_articles, config)
            attempts.append((config.name, len(result.selected)))
            if len(result.selected) >= target:
                break
            self.logger.info(
                f"🔄 Preset '{config.name}' selected {len(result.selected)}/{target} articles, relaxing"
            )

        result.attempts = attempts
        result.meets_target = len(result.selected) >= target
        result.meets_minimum = len(result.selected) >= minimum
        if not result.meets_minimum:
            self.logger.warning(
                f"⚠️ Only {len(result.selected)} articles selected after all presets (minimum {minimum})"
            )
        else:
            self.logger.info(
                f"🎯 Selected {len(result.selected)} articles with preset '{result.preset}' "
                f"(diversity {result.diversity_score}/100)"
            )
        return result
