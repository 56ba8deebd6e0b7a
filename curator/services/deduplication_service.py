"""
Collapse articles that share a link (or, without a link, a title).
"""

import logging
from typing import Dict, List

from curator.models.content import Article


logger = logging.getLogger(__name__)


def deduplicate(articles: List[Article]) -> List[Article]:
    """Single order-preserving pass; the first occurrence of each key wins."""
    seen = set()
    unique: List[Article] = []
    for article in articles:
        key = article.dedupe_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(article)
    return unique


class DeduplicationService:
    """Keeps running stats for the dedupe stage across a run."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.stats: Dict[str, int] = {"input": 0, "output": 0, "url_duplicates": 0, "title_duplicates": 0}

    def deduplicate(self, articles: List[Article]) -> List[Article]:
        unique = deduplicate(articles)
        kept_ids = {id(a) for a in unique}
        for article in articles:
            if id(article) in kept_ids:
                continue
            if article.canonical_url:
                self.stats["url_duplicates"] += 1
            else:
                self.stats["title_duplicates"] += 1

        self.stats["input"] += len(articles)
        self.stats["output"] += len(unique)
        removed = len(articles) - len(unique)
        if removed:
            self.logger.info(f"🧹 Removed {removed} duplicate articles ({len(unique)} unique)")
        return unique
