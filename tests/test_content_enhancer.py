##########################################################################################
#
# Script name: test_content_enhancer.py
#
# Description: Main-content extraction and graceful fallback to feed summaries.
#
##########################################################################################

from typing import List

import aiohttp
import pytest

from curator.services.content_enhancer import (
    ContentEnhancer,
    ContentFetchError,
    extract_main_content,
    generate_excerpt,
)


PAGE = """
<html>
  <head><script>var tracking = 'do not keep';</script><style>.x {}</style></head>
  <body>
    <nav>Home | About | Subscribe</nav>
    <article>
      <h1>Chip makers rally</h1>
      <p>Shares of chip makers rose sharply on Tuesday.</p>
      <p>Subscribe to our newsletter for more.</p>
    </article>
    <footer>All rights reserved</footer>
  </body>
</html>
"""

LONG_TEXT = ' '.join(['OpenAI announced a new machine learning model for developers.'] * 40)


def test_extract_main_content_drops_scripts_navigation_and_boilerplate() -> None:
    text = extract_main_content(PAGE)
    assert 'Chip makers rally' in text
    assert 'Shares of chip makers rose sharply on Tuesday.' in text
    assert 'tracking' not in text
    assert 'About' not in text
    assert 'newsletter' not in text.lower()
    assert 'rights reserved' not in text


def test_generate_excerpt_cuts_on_sentence_boundary() -> None:
    text = 'First sentence here. Second sentence is a bit longer. Third one.'
    assert generate_excerpt(text, max_length=40) == 'First sentence here....'
    assert generate_excerpt('short', max_length=40) == 'short'


@pytest.mark.asyncio
async def test_missing_page_falls_back_without_retry(scored_factory, monkeypatch) -> None:
    calls: List[str] = []

    async def fake_fetch(self, url: str, timeout: float) -> str:
        calls.append(url)
        raise ContentFetchError('HTTP 404', status=404)

    monkeypatch.setattr(ContentEnhancer, '_fetch_page_text', fake_fetch)
    enhancer = ContentEnhancer(max_attempts=3)
    scored = scored_factory(70, title='Gone story', url='https://news.example/gone')

    result = await enhancer.enhance_article(scored)

    assert len(calls) == 1
    assert result.extraction_method == 'rss'
    assert result.full_text == scored.article.summary
    assert result.error == 'HTTP 404'


@pytest.mark.asyncio
async def test_network_errors_are_retried(scored_factory, monkeypatch) -> None:
    calls: List[str] = []

    async def fake_fetch(self, url: str, timeout: float) -> str:
        calls.append(url)
        raise aiohttp.ClientConnectionError('connection reset')

    monkeypatch.setattr(ContentEnhancer, '_fetch_page_text', fake_fetch)
    result = await ContentEnhancer(max_attempts=2).enhance_article(scored_factory(70, title='Flaky story'))

    assert len(calls) == 2
    assert result.extraction_method == 'rss'
    assert 'ClientConnectionError' in result.error


@pytest.mark.asyncio
async def test_fallback_domains_skip_the_network(scored_factory, monkeypatch) -> None:
    async def fail_fetch(self, url: str, timeout: float) -> str:
        raise AssertionError('should not fetch')

    monkeypatch.setattr(ContentEnhancer, '_fetch_page_text', fail_fetch)
    scored = scored_factory(70, title='Paywalled story', url='https://venturebeat.com/ai/story', domain='venturebeat.com')

    result = await ContentEnhancer().enhance_article(scored)

    assert result.extraction_method == 'rss-fallback'
    assert result.quality.extraction == 5


@pytest.mark.asyncio
async def test_successful_extraction_scores_higher(scored_factory, monkeypatch) -> None:
    async def fake_fetch(self, url: str, timeout: float) -> str:
        return LONG_TEXT

    monkeypatch.setattr(ContentEnhancer, '_fetch_page_text', fake_fetch)
    scored = scored_factory(70, title='OpenAI announced a new model')
    scored.authority_score = 90

    result = await ContentEnhancer().enhance_article(scored)

    assert result.extraction_method == 'extracted'
    assert result.word_count == 360
    assert result.reading_time_minutes == 2
    assert result.quality.extraction == 10
    assert result.quality.length == 20
    assert 'OpenAI' in result.entities
    assert 'machine learning' in result.topics


@pytest.mark.asyncio
async def test_enhance_never_drops_articles(scored_factory, monkeypatch) -> None:
    async def fake_fetch(self, url: str, timeout: float) -> str:
        if 'broken' in url:
            raise RuntimeError('parser crashed')
        return LONG_TEXT

    monkeypatch.setattr(ContentEnhancer, '_fetch_page_text', fake_fetch)
    articles = [scored_factory(70 - i, title=f'Story {i}', url=f'https://x.example/{"broken" if i == 1 else i}')
                for i in range(4)]

    enhanced = await ContentEnhancer(batch_size=2, batch_pause=0).enhance(articles, max_articles=3)

    assert [e.scored for e in enhanced] == articles[:3]
    assert [e.extraction_method for e in enhanced] == ['extracted', 'rss', 'extracted']
    assert enhanced[1].error == 'parser crashed'
