"""
URL sanitizing and reachability probing for article links.

Links are cleaned of tracking parameters and obviously unusable targets are
rejected without touching the network. Everything else is probed with a HEAD
request in small batches with a pause between them.
"""

import asyncio
import html
import ipaddress
import logging
import ssl
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import aiohttp
import certifi

from curator.models.content import Article


USER_AGENT = "Mozilla/5.0 (compatible; CuratorBot/1.0; +https://example.com/bot)"

DEFAULT_ALLOWED_STATUSES = (200, 201, 202, 203, 204, 301, 302, 307, 308)

TRACKING_PARAMS = {"ref", "source", "fbclid", "gclid", "mc_cid", "mc_eid", "igshid"}

SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "data:", "file:")


@dataclass
class URLValidationResult:
    url: str
    is_valid: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    final_url: Optional[str] = None
    exempt: bool = False


@dataclass
class URLValidationReport:
    checked: int = 0
    valid: int = 0
    invalid: int = 0
    fallbacks_applied: int = 0
    invalid_urls: Dict[str, str] = field(default_factory=dict)


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered.startswith("utm_") or lowered in TRACKING_PARAMS


def sanitize_url(url: Optional[str]) -> Optional[str]:
    """
    Normalize a raw feed link.

    Returns None when no host can be recovered.
    """
    if not url:
        return None
    cleaned = html.unescape(url.strip())
    if not cleaned:
        return None
    if any(cleaned.lower().startswith(s) for s in SKIPPED_SCHEMES):
        return cleaned

    if cleaned.startswith("//"):
        cleaned = f"https:{cleaned}"
    elif "://" not in cleaned:
        cleaned = f"https://{cleaned.lstrip('/')}"

    parsed = urlparse(cleaned)
    if not parsed.netloc:
        return None

    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if not _is_tracking_param(k)]
    return urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        parsed.path or "/",
        parsed.params,
        urlencode(query, doseq=True),
        parsed.fragment,
    ))


def extract_domain(url: str) -> str:
    try:
        domain = urlparse(url).netloc.lower()
    except ValueError:
        return ""
    domain = domain.split("@")[-1].split(":")[0]
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def unsafe_reason(url: str) -> Optional[str]:
    """Reason a link must never enter the pipeline: bad scheme or a local target."""
    lowered = url.lower()
    for scheme in SKIPPED_SCHEMES:
        if lowered.startswith(scheme):
            return f"disallowed scheme {scheme[:-1]}"

    parsed = urlparse(lowered)
    if parsed.scheme not in ("http", "https"):
        return f"unsupported scheme {parsed.scheme or 'none'}"

    host = (parsed.hostname or "")
    if not host:
        return "missing host"
    if host == "localhost" or host.endswith(".local"):
        return "local address"
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return None
    if address.is_loopback or address.is_private or address.is_link_local or address.is_unspecified:
        return "private address"
    return None


def skip_reason(url: str) -> Optional[str]:
    """Reason a URL should never be probed, or None when it is a candidate."""
    reason = unsafe_reason(url)
    if reason:
        return reason
    if urlparse(url.lower()).path.endswith(".pdf"):
        return "pdf document"
    return None


def get_fallback_url(url: str) -> Optional[str]:
    """Domain root of a link, used when the article page itself is unreachable."""
    parsed = urlparse(url)
    if not parsed.netloc:
        return None
    return f"{parsed.scheme or 'https'}://{parsed.netloc}/"


class URLValidator:
    """
    Probes article links and filters out unreachable ones.
    """

    def __init__(self,
                 timeout: float = 5.0,
                 allowed_statuses: Sequence[int] = DEFAULT_ALLOWED_STATUSES,
                 exempt_domains: Optional[Iterable[str]] = None,
                 batch_size: int = 5,
                 batch_delay: float = 1.0,
                 user_agent: str = USER_AGENT):
        self.timeout = timeout
        self.allowed_statuses = set(allowed_statuses)
        self.exempt_domains = {d.lower() for d in (exempt_domains or [])}
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.user_agent = user_agent
        self.logger = logging.getLogger(__name__)

    def is_exempt(self, url: str) -> bool:
        domain = extract_domain(url)
        return any(domain == d or domain.endswith(f".{d}") for d in self.exempt_domains)

    def _create_session(self) -> aiohttp.ClientSession:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        return aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            connector=aiohttp.TCPConnector(ssl=ssl_context, limit=self.batch_size * 2),
            headers={"User-Agent": self.user_agent},
        )

    async def _probe(self, session: aiohttp.ClientSession, url: str) -> Tuple[int, str]:
        """Return (status, final_url). HEAD first, GET when HEAD is refused."""
        async with session.head(url, allow_redirects=True) as resp:
            status, final_url = resp.status, str(resp.url)
        if status in (405, 501):
            async with session.get(url, allow_redirects=True) as resp:
                status, final_url = resp.status, str(resp.url)
        return status, final_url

    async def validate_url(self, url: str, session: Optional[aiohttp.ClientSession] = None) -> URLValidationResult:
        sanitized = sanitize_url(url)
        if not sanitized:
            return URLValidationResult(url=url, is_valid=False, error="unparseable url")

        reason = skip_reason(sanitized)
        if reason:
            return URLValidationResult(url=sanitized, is_valid=False, error=reason)

        if self.is_exempt(sanitized):
            return URLValidationResult(url=sanitized, is_valid=True, exempt=True)

        owns_session = session is None
        if owns_session:
            session = self._create_session()
        try:
            status, final_url = await asyncio.wait_for(self._probe(session, sanitized), timeout=self.timeout)
        except asyncio.TimeoutError:
            return URLValidationResult(url=sanitized, is_valid=False, error="timeout")
        except (aiohttp.ClientError, ValueError, OSError) as e:
            return URLValidationResult(url=sanitized, is_valid=False, error=f"{type(e).__name__}: {e}")
        finally:
            if owns_session:
                await session.close()

        if status in self.allowed_statuses:
            return URLValidationResult(url=sanitized, is_valid=True, status_code=status, final_url=final_url)
        return URLValidationResult(
            url=sanitized, is_valid=False, status_code=status, final_url=final_url, error=f"HTTP {status}"
        )

    async def validate_batch(self, urls: Sequence[str]) -> Dict[str, URLValidationResult]:
        """Probe URLs in fixed-size batches with a pause between batches."""
        unique = list(dict.fromkeys(u for u in urls if u))
        results: Dict[str, URLValidationResult] = {}
        if not unique:
            return results

        async with self._create_session() as session:
            for start in range(0, len(unique), self.batch_size):
                batch = unique[start:start + self.batch_size]
                outcomes = await asyncio.gather(
                    *(self.validate_url(u, session) for u in batch),
                    return_exceptions=True,
                )
                for url, outcome in zip(batch, outcomes):
                    if isinstance(outcome, BaseException):
                        results[url] = URLValidationResult(url=url, is_valid=False, error=str(outcome))
                    else:
                        results[url] = outcome
                if start + self.batch_size < len(unique) and self.batch_delay > 0:
                    await asyncio.sleep(self.batch_delay)

        valid = sum(1 for r in results.values() if r.is_valid)
        self.logger.info(f"🔗 Validated {len(results)} URLs: {valid} valid, {len(results) - valid} invalid")
        return results

    async def process_and_validate(self,
                                   articles: List[Article],
                                   min_valid_ratio: float = 0.7,
                                   max_fallbacks: int = 5) -> Tuple[List[Article], URLValidationReport]:
        """
        Drop articles whose links fail validation.

        When a feed loses too many links in one pass, up to ``max_fallbacks``
        of its articles are rescued by pointing them at the domain root.
        """
        report = URLValidationReport()
        results = await self.validate_batch([a.canonical_url for a in articles])
        report.checked = len(results)

        by_feed: Dict[str, List[Article]] = defaultdict(list)
        for article in articles:
            by_feed[article.source_id].append(article)

        rescued: Dict[int, Article] = {}
        fallbacks_left = max_fallbacks
        for feed_id, feed_articles in by_feed.items():
            invalid = [a for a in feed_articles if not self._result_for(results, a).is_valid]
            ratio = 1 - len(invalid) / len(feed_articles)
            if ratio >= min_valid_ratio or fallbacks_left <= 0:
                continue

            self.logger.warning(
                f"⚠️ Feed {feed_id}: only {ratio:.0%} of links valid, trying domain-root fallbacks"
            )
            candidates = invalid[:fallbacks_left]
            roots = {a.canonical_url: get_fallback_url(a.canonical_url) for a in candidates}
            root_results = await self.validate_batch([r for r in roots.values() if r])
            for article in candidates:
                root = roots.get(article.canonical_url)
                if root and root_results.get(root) and root_results[root].is_valid:
                    rescued[id(article)] = replace(article, canonical_url=root)
                    fallbacks_left -= 1
                    report.fallbacks_applied += 1

        kept: List[Article] = []
        for article in articles:
            result = self._result_for(results, article)
            if result.is_valid:
                kept.append(replace(article, canonical_url=result.url) if result.url != article.canonical_url else article)
            elif id(article) in rescued:
                kept.append(rescued[id(article)])
            else:
                report.invalid_urls[article.canonical_url] = result.error or "invalid"

        report.valid = len(kept)
        report.invalid = len(articles) - len(kept)
        return kept, report

    @staticmethod
    def _result_for(results: Dict[str, URLValidationResult], article: Article) -> URLValidationResult:
        return results.get(article.canonical_url) or URLValidationResult(
            url=article.canonical_url, is_valid=False, error="missing url"
        )
