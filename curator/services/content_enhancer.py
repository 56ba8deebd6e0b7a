"""
Optional full-text enhancement for selected articles.

Fetches each article page, reduces it to main-content text and scores the
result. Any failure degrades to the feed-supplied summary instead of
dropping the article.
"""

import asyncio
import logging
import math
import re
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import aiohttp
import certifi
from bs4 import BeautifulSoup

from curator.models.content import ScoredArticle
from curator.services.url_validator import USER_AGENT, extract_domain
from curator.utils.text_analysis import contains_phrase


# Domains where full-page extraction usually fails (paywalls, bot walls)
RSS_FALLBACK_DOMAINS = {
    "venturebeat.com", "fastcompany.com", "businessinsider.com", "arxiv.org", "nature.com",
}

ARTICLE_SELECTORS = [
    'article',
    '[role="main"]',
    '.article-body',
    '.story-body',
    '.entry-content',
    '.post-content',
    'main',
    '.content',
    '#content',
]

STRIPPED_TAGS = ["script", "style", "nav", "header", "footer", "aside", "form", "noscript", "iframe"]

BOILERPLATE_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    r"subscribe to our newsletter",
    r"follow us on \w+",
    r"share this article",
    r"read more articles",
    r"advertisement",
    r"cookie policy",
    r"privacy policy",
    r"all rights reserved",
)]

TOPIC_KEYWORDS = (
    'artificial intelligence', 'machine learning', 'ai', 'ml', 'neural network',
    'deep learning', 'llm', 'gpt', 'chatbot', 'automation', 'robotics',
    'computer vision', 'natural language', 'nlp', 'algorithm', 'data science',
    'cloud computing', 'api', 'open source', 'quantum', 'cybersecurity', 'privacy',
    'startup', 'funding', 'ipo', 'acquisition', 'regulation', 'chips', 'semiconductor',
)

KNOWN_ENTITIES = (
    'OpenAI', 'Google', 'Microsoft', 'Apple', 'Amazon', 'Meta', 'Tesla',
    'Anthropic', 'DeepMind', 'NVIDIA', 'IBM', 'Oracle', 'Salesforce',
    'ChatGPT', 'Claude', 'Gemini', 'Copilot', 'Mistral', 'Hugging Face',
    'Stanford', 'MIT', 'Harvard', 'Berkeley', 'Carnegie Mellon',
)

QUALITY_KEYWORDS = ('ai', 'artificial intelligence', 'machine learning', 'neural', 'gpt', 'llm', 'chatbot', 'automation')

ACTION_WORDS = re.compile(r"\b(new|breakthrough|announced|released|launched|unveiled)\b", re.IGNORECASE)


class ContentFetchError(Exception):
    """Raised when a page cannot be fetched or yields no usable text"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass
class QualityBreakdown:
    length: float = 0
    freshness: float = 0
    authority: float = 0
    engagement: float = 0
    relevance: float = 0
    extraction: float = 0

    @property
    def total(self) -> float:
        return self.length + self.freshness + self.authority + self.engagement + self.relevance + self.extraction

    def describe(self, method: str) -> str:
        return (
            f"Length: {self.length:.0f}/30, Freshness: {self.freshness:.0f}/25, "
            f"Authority: {self.authority:.0f}/20, Engagement: {self.engagement:.0f}/15, "
            f"Relevance: {self.relevance:.0f}/10, Extraction: {self.extraction:.0f}/10 ({method})"
        )


@dataclass
class EnhancedContent:
    scored: ScoredArticle
    full_text: str
    excerpt: str
    word_count: int
    reading_time_minutes: int
    extraction_method: str  # extracted | rss-fallback | rss
    quality: QualityBreakdown
    topics: List[str] = field(default_factory=list)
    entities: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def quality_score(self) -> float:
        return self.quality.total


def extract_main_content(html: str) -> str:
    """Reduce an HTML page to its main readable text."""
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup(STRIPPED_TAGS):
        tag.decompose()

    content = ""
    for selector in ARTICLE_SELECTORS:
        element = soup.select_one(selector)
        if element:
            content = element.get_text(separator=' ', strip=True)
            if len(content.split()) >= 50:
                break

    if not content:
        body = soup.find('body')
        content = body.get_text(separator=' ', strip=True) if body else soup.get_text(separator=' ', strip=True)

    return clean_text(content)


def clean_text(text: str) -> str:
    for pattern in BOILERPLATE_PATTERNS:
        text = pattern.sub('', text)
    return re.sub(r'\s+', ' ', text).strip()


def generate_excerpt(text: str, max_length: int = 200) -> str:
    if len(text) <= max_length:
        return text
    sentences = re.split(r'(?<=[.!?])\s+', text)
    excerpt = ""
    for sentence in sentences:
        if len(excerpt) + len(sentence) + 1 > max_length:
            break
        excerpt = f"{excerpt} {sentence}".strip()
    if not excerpt:
        excerpt = text[:max_length].rsplit(' ', 1)[0]
    return f"{excerpt}..." if len(excerpt) < len(text) else excerpt


class ContentEnhancer:
    """
    Fetches full article text in fixed-size chunks and scores content quality.
    """

    def __init__(self,
                 batch_size: int = 5,
                 batch_pause: float = 0.1,
                 max_attempts: int = 2,
                 base_timeout: float = 5.0,
                 min_word_count: int = 150,
                 quality_threshold: float = 45,
                 max_content_chars: int = 8000,
                 fallback_domains: Optional[Sequence[str]] = None,
                 user_agent: str = USER_AGENT):
        self.batch_size = max(1, batch_size)
        self.batch_pause = batch_pause
        self.max_attempts = max(1, max_attempts)
        self.base_timeout = base_timeout
        self.min_word_count = min_word_count
        self.quality_threshold = quality_threshold
        self.max_content_chars = max_content_chars
        self.fallback_domains = set(fallback_domains if fallback_domains is not None else RSS_FALLBACK_DOMAINS)
        self.user_agent = user_agent
        self.stats: Dict[str, int] = {"extracted": 0, "rss-fallback": 0, "rss": 0, "below_threshold": 0}
        self.logger = logging.getLogger(__name__)

    async def enhance(self, articles: Sequence[ScoredArticle], max_articles: int = 20) -> List[EnhancedContent]:
        """
        Enhance up to ``max_articles`` articles.

        Chunks run sequentially; articles inside a chunk run concurrently.
        """
        targets = list(articles)[:max_articles]
        enhanced: List[EnhancedContent] = []
        for start in range(0, len(targets), self.batch_size):
            chunk = targets[start:start + self.batch_size]
            outcomes = await asyncio.gather(*(self.enhance_article(s) for s in chunk), return_exceptions=True)
            for scored, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    self.logger.warning(f"Enhancement failed for {scored.url}: {outcome}")
                    outcome = self._build(scored, self._fallback_text(scored), "rss", error=str(outcome))
                enhanced.append(outcome)
            if start + self.batch_size < len(targets) and self.batch_pause > 0:
                await asyncio.sleep(self.batch_pause)

        below = [e for e in enhanced if e.quality_score < self.quality_threshold]
        self.stats["below_threshold"] += len(below)
        self.logger.info(
            f"📝 Enhanced {len(enhanced)} articles "
            f"({sum(1 for e in enhanced if e.extraction_method == 'extracted')} full text, "
            f"{len(below)} below quality {self.quality_threshold})"
        )
        return enhanced

    async def enhance_article(self, scored: ScoredArticle) -> EnhancedContent:
        domain = extract_domain(scored.url)
        if domain in self.fallback_domains:
            return self._build(scored, self._fallback_text(scored), "rss-fallback")

        try:
            text = await self._fetch_with_retry(scored.url)
        except ContentFetchError as e:
            self.logger.debug(f"Falling back to feed summary for {domain}: {e}")
            return self._build(scored, self._fallback_text(scored), "rss", error=str(e))

        if len(text.split()) < self.min_word_count:
            fallback = self._fallback_text(scored)
            if len(fallback.split()) > len(text.split()):
                return self._build(scored, fallback, "rss", error="extracted text too short")
        return self._build(scored, text[:self.max_content_chars], "extracted")

    async def _fetch_with_retry(self, url: str) -> str:
        last_error: Optional[ContentFetchError] = None
        for attempt in range(1, self.max_attempts + 1):
            timeout = self.base_timeout + attempt * 2
            try:
                return await asyncio.wait_for(self._fetch_page_text(url, timeout), timeout=timeout)
            except asyncio.TimeoutError:
                last_error = ContentFetchError(f"timeout after {timeout:.0f}s")
            except (aiohttp.ClientError, OSError, UnicodeDecodeError) as e:
                last_error = ContentFetchError(f"{type(e).__name__}: {e}")
            except ContentFetchError as e:
                last_error = e
                if e.status in (401, 403, 404, 410):
                    break
        raise last_error or ContentFetchError("fetch failed")

    async def _fetch_page_text(self, url: str, timeout: float) -> str:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        async with aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(ssl=ssl_context),
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as session:
            async with session.get(url, headers={'User-Agent': self.user_agent}, allow_redirects=True) as response:
                if response.status != 200:
                    raise ContentFetchError(f"HTTP {response.status}", status=response.status)
                html = await response.text()
        text = extract_main_content(html)
        if not text:
            raise ContentFetchError("no readable content")
        return text

    @staticmethod
    def _fallback_text(scored: ScoredArticle) -> str:
        article = scored.article
        return clean_text(article.content or article.summary or article.title)

    def _build(self, scored: ScoredArticle, text: str, method: str, error: Optional[str] = None) -> EnhancedContent:
        words = len(text.split())
        quality = self.calculate_quality(scored, text, words, method)
        self.stats[method] = self.stats.get(method, 0) + 1
        return EnhancedContent(
            scored=scored,
            full_text=text,
            excerpt=generate_excerpt(text),
            word_count=words,
            reading_time_minutes=max(1, math.ceil(words / 200)),
            extraction_method=method,
            quality=quality,
            topics=self.extract_topics(scored.article.title, text),
            entities=self.extract_entities(scored.article.title, text),
            error=error,
        )

    def calculate_quality(self,
                          scored: ScoredArticle,
                          text: str,
                          word_count: int,
                          method: str,
                          now: Optional[datetime] = None) -> QualityBreakdown:
        article = scored.article
        factors = QualityBreakdown()

        if word_count >= 1000:
            factors.length = 30
        elif word_count >= 500:
            factors.length = 25
        elif word_count >= 300:
            factors.length = 20
        elif word_count >= 200:
            factors.length = 15
        else:
            factors.length = 5

        now = now or datetime.now(timezone.utc)
        age_hours = max(0.0, (now - article.published_at).total_seconds() / 3600)
        if age_hours <= 6:
            factors.freshness = 25
        elif age_hours <= 24:
            factors.freshness = 20
        elif age_hours <= 48:
            factors.freshness = 15
        elif age_hours <= 72:
            factors.freshness = 10
        else:
            factors.freshness = 5

        factors.authority = round(min(100.0, scored.authority_score) / 100 * 20, 1)

        title = article.title
        factors.engagement = (
            (5 if re.search(r'\d', title) else 0)
            + (3 if '?' in title else 0)
            + (7 if ACTION_WORDS.search(title) else 0)
        )

        relevance = 0
        for keyword in QUALITY_KEYWORDS:
            if contains_phrase(title, keyword):
                relevance += 2
            elif contains_phrase(text, keyword):
                relevance += 1
        factors.relevance = min(relevance, 10)

        factors.extraction = {"extracted": 10, "rss-fallback": 5}.get(method, 0)
        return factors

    @staticmethod
    def extract_topics(title: str, text: str, limit: int = 10) -> List[str]:
        combined = f"{title} {text}"
        return [k for k in TOPIC_KEYWORDS if contains_phrase(combined, k)][:limit]

    @staticmethod
    def extract_entities(title: str, text: str) -> List[str]:
        combined = f"{title} {text}"
        return [e for e in KNOWN_ENTITIES if re.search(rf"\b{re.escape(e)}\b", combined)]
