"""
Feed fetching with per-feed isolation.

Every enabled feed is fetched concurrently under its own adaptive timeout.
A slow, broken or unreachable feed contributes zero articles and a failure
record; it never aborts the batch.
"""

import asyncio
import logging
import re
import ssl
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import aiohttp
import certifi
import feedparser
from bs4 import BeautifulSoup
from dateutil import parser as dateutil_parser

from curator.models.content import Article, FeedConfig
from curator.services.feed_performance import FeedPerformanceTracker
from curator.services.url_validator import USER_AGENT, extract_domain, sanitize_url, unsafe_reason
from curator.utils.error_monitoring import ErrorHandler


# Progressive time-period fallback: 24 hours, 3 days, 1 week
TIME_WINDOWS_HOURS = (24, 72, 168)


class RSSServiceError(Exception):
    """Custom exception for feed fetch failures"""
    pass


class FeedParseError(RSSServiceError):
    """Raised when a feed body is not parseable XML"""
    pass


@dataclass
class FeedResult:
    feed_id: str
    feed_name: str
    success: bool
    article_count: int = 0
    duration: float = 0.0
    timeout: float = 0.0
    error: Optional[str] = None
    timed_out: bool = False
    skipped: bool = False


@dataclass
class FeedFetchReport:
    articles: List[Article] = field(default_factory=list)
    results: List[FeedResult] = field(default_factory=list)

    @property
    def successful_feeds(self) -> List[str]:
        return [r.feed_id for r in self.results if r.success]

    @property
    def failed_feeds(self) -> List[str]:
        return [r.feed_id for r in self.results if not r.success and not r.skipped]

    def summary(self) -> Dict[str, int]:
        return {
            "feeds_attempted": sum(1 for r in self.results if not r.skipped),
            "feeds_successful": len(self.successful_feeds),
            "feeds_failed": len(self.failed_feeds),
            "feeds_timed_out": sum(1 for r in self.results if r.timed_out),
            "feeds_skipped": sum(1 for r in self.results if r.skipped),
            "articles": len(self.articles),
        }


class RSSService:
    """
    Concurrent feed fetcher with adaptive timeouts and circuit breaking.
    """

    def __init__(self,
                 feeds: Optional[Sequence[FeedConfig]] = None,
                 max_articles_per_feed: int = 25,
                 max_concurrent_feeds: int = 10,
                 max_attempts: int = 2,
                 tracker: Optional[FeedPerformanceTracker] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 filter_quality: bool = True,
                 user_agent: str = USER_AGENT):
        self.feeds: List[FeedConfig] = list(feeds or [])
        self.max_articles_per_feed = max_articles_per_feed
        self.max_attempts = max(1, max_attempts)
        self.semaphore = asyncio.Semaphore(max_concurrent_feeds)
        self.tracker = tracker or FeedPerformanceTracker()
        self.error_handler = error_handler or ErrorHandler()
        self.filter_quality = filter_quality
        self.user_agent = user_agent
        self.exclude_patterns = self._init_exclude_patterns()
        self.logger = logging.getLogger(__name__)

    def _init_exclude_patterns(self) -> List[re.Pattern]:
        """Patterns for excluding low-quality titles."""
        return [re.compile(p, re.IGNORECASE) for p in (
            r'\d+\s+(ways|things|reasons|tips)\b',   # Listicles
            r'you\s+won\'t\s+believe',               # Clickbait
            r'\d+\s+photos?\s+that',                 # Photo galleries
            r'(watch|see)\s+what\s+happens?',        # Clickbait videos
            r'\bsponsored\b|\bpromoted\b',           # Paid placements
        )]

    async def fetch_all_feeds(self, feeds: Optional[Sequence[FeedConfig]] = None) -> FeedFetchReport:
        """
        Fetch every enabled feed concurrently and settle all of them.
        """
        configs = sorted(feeds if feeds is not None else self.feeds, key=lambda f: f.priority)
        report = FeedFetchReport()
        start_time = time.time()

        runnable: List[FeedConfig] = []
        for config in configs:
            if not config.enabled:
                report.results.append(FeedResult(config.id, config.name, False, error="disabled", skipped=True))
            elif not self.tracker.can_fetch(config.id):
                self.logger.debug(f"Skipping circuit-open feed: {config.name}")
                report.results.append(FeedResult(config.id, config.name, False, error="circuit open", skipped=True))
            else:
                runnable.append(config)

        outcomes = await asyncio.gather(
            *(self._fetch_feed_with_timeout_and_tracking(config) for config in runnable),
            return_exceptions=True,
        )

        order = 0
        for config, outcome in zip(runnable, outcomes):
            if isinstance(outcome, BaseException):
                # _fetch_feed_with_timeout_and_tracking reports its own failures
                self.logger.error(f"Unexpected failure for feed {config.name}: {outcome}")
                report.results.append(FeedResult(config.id, config.name, False, error=str(outcome)))
                continue
            articles, result = outcome
            report.results.append(result)
            for article in articles:
                report.articles.append(replace(article, feed_order=order))
                order += 1

        summary = report.summary()
        self.logger.info(
            f"📰 Fetched {summary['articles']} articles from {summary['feeds_successful']}/"
            f"{summary['feeds_attempted']} feeds in {time.time() - start_time:.2f}s "
            f"({summary['feeds_timed_out']} timed out, {summary['feeds_skipped']} skipped)"
        )
        return report

    async def _fetch_feed_with_timeout_and_tracking(self, config: FeedConfig) -> Tuple[List[Article], FeedResult]:
        """Fetch one feed under its adaptive timeout, recording the outcome."""
        timeout = self.tracker.get_adaptive_timeout(config.id)
        start_time = time.time()

        async with self.semaphore:
            try:
                articles = await asyncio.wait_for(self.fetch_feed(config), timeout=timeout)
            except asyncio.TimeoutError:
                elapsed = time.time() - start_time
                self.logger.warning(f"⏱️ Timeout fetching {config.name} ({timeout:.1f}s)")
                self.tracker.record_failure(config.id, elapsed, "timeout")
                self.error_handler.handle_error(
                    asyncio.TimeoutError(f"feed timed out after {timeout:.1f}s"), "feeds", config.id
                )
                return [], FeedResult(config.id, config.name, False, duration=elapsed,
                                      timeout=timeout, error="timeout", timed_out=True)
            except (RSSServiceError, aiohttp.ClientError, OSError, ValueError) as e:
                elapsed = time.time() - start_time
                self.logger.warning(f"❌ Error fetching {config.name}: {e}")
                self.tracker.record_failure(config.id, elapsed, str(e))
                self.error_handler.handle_error(e, "feeds", config.id)
                return [], FeedResult(config.id, config.name, False, duration=elapsed,
                                      timeout=timeout, error=str(e))

        elapsed = time.time() - start_time
        self.tracker.record_success(config.id, elapsed, len(articles))
        self.logger.debug(f"Fetched {len(articles)} articles from {config.name} in {elapsed:.2f}s")
        return articles, FeedResult(config.id, config.name, True, article_count=len(articles),
                                    duration=elapsed, timeout=timeout)

    async def fetch_feed(self, config: FeedConfig) -> List[Article]:
        """Download and parse one feed, retrying transient failures once."""
        last_error: Optional[Exception] = None
        content: Optional[str] = None
        for attempt in range(self.max_attempts):
            try:
                content = await self._fetch_text(config.url)
                break
            except (RSSServiceError, aiohttp.ClientError, OSError) as exc:
                last_error = exc
                if attempt < self.max_attempts - 1:
                    await asyncio.sleep(0.25 * (2 ** attempt))

        if content is None:
            raise RSSServiceError(str(last_error) if last_error else f"Failed to fetch {config.url}")

        articles = self._parse_feed(content, config)
        if self.filter_quality:
            articles = [a for a in articles if self._passes_quality_filter(a)]
        return articles[:self.max_articles_per_feed]

    async def _fetch_text(self, url: str) -> str:
        """Single HTTP attempt; retries are handled by the caller."""
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/rss+xml,application/atom+xml,application/xml;q=0.9,*/*;q=0.8",
        }
        async with aiohttp.ClientSession(connector=aiohttp.TCPConnector(ssl=ssl_context)) as session:
            async with session.get(url, headers=headers, allow_redirects=True) as resp:
                if resp.status != 200:
                    raise RSSServiceError(f"HTTP {resp.status} for {url}")
                return await resp.text()

    def _parse_feed(self, content: str, config: FeedConfig) -> List[Article]:
        """Parse RSS/Atom content into articles."""
        parsed = feedparser.parse(content)
        if getattr(parsed, "bozo", False) and not parsed.entries:
            raise FeedParseError(f"Malformed feed {config.id}: {getattr(parsed, 'bozo_exception', 'unknown error')}")

        fetched_at = datetime.now(timezone.utc)
        articles: List[Article] = []
        for entry in parsed.entries:
            title = self._clean_text(getattr(entry, "title", ""))
            link = getattr(entry, "link", "") or ""
            if not title and not link:
                continue

            canonical_url = sanitize_url(link) or ""
            reason = unsafe_reason(canonical_url) if canonical_url else None
            if reason:
                self.logger.debug(f"Dropping entry from {config.id} with link {canonical_url[:80]}: {reason}")
                continue
            summary = self._clean_text(getattr(entry, "summary", getattr(entry, "description", "")) or "")

            content_value: Optional[str] = None
            if getattr(entry, "content", None):
                values = [c.get("value", "") for c in entry.content if c.get("value")]
                if values:
                    content_value = self._clean_text(max(values, key=len))

            published_raw = getattr(entry, "published", None) or getattr(entry, "updated", None)
            published_at = self._parse_date(published_raw, fetched_at)

            tags = [t.get("term", "") for t in getattr(entry, "tags", []) or [] if t.get("term")]

            articles.append(Article(
                title=title,
                canonical_url=canonical_url,
                published_at=published_at,
                source_id=config.id,
                source_domain=extract_domain(canonical_url) or extract_domain(config.url),
                category=config.category,
                summary=summary,
                content=content_value,
                author=getattr(entry, "author", None),
                categories=tags,
            ))
        return articles

    def _clean_text(self, value: str) -> str:
        if not value:
            return ""
        if "<" in value and ">" in value:
            value = BeautifulSoup(value, "html.parser").get_text(separator=" ")
        return re.sub(r"\s+", " ", value).strip()

    def _parse_date(self, date_str: Optional[str], fallback: datetime) -> datetime:
        """Parse a feed date into aware UTC; unparseable dates fall back to fetch time."""
        if not date_str or not date_str.strip():
            return fallback
        try:
            dt = dateutil_parser.parse(date_str)
        except (ValueError, TypeError, OverflowError) as e:
            self.logger.debug(f"Failed to parse feed date '{date_str}': {e}, using fetch time")
            return fallback

        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        dt = dt.astimezone(timezone.utc)

        # Dates more than a day in the future are publisher clock errors
        if dt - fallback > timedelta(days=1):
            return fallback
        return dt

    def _passes_quality_filter(self, article: Article) -> bool:
        if len(article.title) < 10:
            return False
        return not any(p.search(article.title) for p in self.exclude_patterns)

    def select_time_window(self,
                           articles: List[Article],
                           min_articles: int,
                           now: Optional[datetime] = None,
                           windows: Sequence[int] = TIME_WINDOWS_HOURS) -> Tuple[List[Article], int]:
        """
        Narrowest publish window holding at least ``min_articles`` articles.

        Falls back through 24h, 3 days and 1 week; returns the widest window
        when none is sufficient.
        """
        now = now or datetime.now(timezone.utc)
        selected: List[Article] = []
        hours = windows[-1]
        for hours in windows:
            cutoff = now - timedelta(hours=hours)
            selected = [a for a in articles if a.published_at >= cutoff]
            if len(selected) >= min_articles:
                break
            self.logger.info(f"Only {len(selected)} articles within {hours}h, widening window")
        return selected, hours
