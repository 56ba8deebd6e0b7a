##########################################################################################
#
# Script name: conftest.py
#
# Description: Shared article factories for the curation tests.
#
##########################################################################################

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest

from curator.models.content import Article, ScoredArticle


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def build_article(
    title: str = 'OpenAI releases a new reasoning model for developers',
    url: Optional[str] = None,
    source_id: str = 'feed-a',
    domain: str = 'example.com',
    category: str = 'technology',
    hours_old: float = 1.0,
    summary: str = 'The model improves reasoning benchmarks and ships through the API.',
    feed_order: int = 0,
    now: datetime = NOW,
) -> Article:
    slug = title.lower().replace(' ', '-')[:40]
    return Article(
        title=title,
        canonical_url=url if url is not None else f'https://{domain}/{slug}',
        published_at=now - timedelta(hours=hours_old),
        source_id=source_id,
        source_domain=domain,
        category=category,
        summary=summary,
        feed_order=feed_order,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def article_factory() -> Callable[..., Article]:
    return build_article


@pytest.fixture
def scored_factory() -> Callable[..., ScoredArticle]:
    def _build(composite: float, **kwargs) -> ScoredArticle:
        return ScoredArticle(article=build_article(**kwargs), composite_score=composite)
    return _build
