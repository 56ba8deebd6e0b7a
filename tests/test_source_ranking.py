##########################################################################################
#
# Script name: test_source_ranking.py
#
# Description: Authority lookups, trend detection and composite scoring.
#
##########################################################################################

from curator.services.freshness_scorer import FreshnessScorer
from curator.services.source_ranking_service import DEFAULT_WEIGHTS, SourceRankingService


def test_authority_table_lookup_and_bonuses() -> None:
    ranking = SourceRankingService()

    assert ranking.get_source_authority('https://www.techcrunch.com/2026/ai').authority_score == 90
    assert ranking.get_source_authority('blog.openai.com').authority_score == 89

    unknown = ranking.get_source_authority('https://unknown-site.example/a')
    assert unknown.authority_score == ranking.default_score

    edu = ranking.get_source_authority('https://cs.unknown-college.edu/news')
    assert edu.authority_score == ranking.default_score + ranking.edu_bonus
    assert edu.trust_indicators.author_credentials


def test_missing_config_falls_back_to_defaults(tmp_path) -> None:
    ranking = SourceRankingService(config_path=str(tmp_path / 'missing.json'))
    assert ranking.get_source_authority('https://nowhere.example').authority_score == ranking.default_score


def test_composite_is_monotonic_and_bounded_per_factor() -> None:
    ranking = SourceRankingService()
    base = dict(authority=50, freshness=50, relevance=0.5, trend=5, quality=50)
    baseline = ranking.composite(**base)

    for factor, higher in (('authority', 80), ('freshness', 90), ('relevance', 0.9), ('trend', 12), ('quality', 90)):
        bumped = dict(base, **{factor: higher})
        assert ranking.composite(**bumped) > baseline

    assert ranking.composite(authority=100, freshness=0, relevance=0, trend=0, quality=0) == DEFAULT_WEIGHTS['authority']
    assert ranking.composite(authority=500, freshness=0, relevance=0, trend=0, quality=0) == DEFAULT_WEIGHTS['authority']
    assert ranking.composite(authority=100, freshness=100, relevance=1, trend=15, quality=100) == 100


def test_trends_favor_terms_concentrated_in_recent_half(article_factory) -> None:
    ranking = SourceRankingService()
    articles = [
        article_factory(title='Quantum chips reach new milestone', summary='quantum hardware', hours_old=1),
        article_factory(title='Quantum startup raises funding', summary='quantum investors', hours_old=2),
        article_factory(title='Cloud pricing changes', summary='storage costs', hours_old=30),
        article_factory(title='Cloud outage postmortem', summary='storage outage', hours_old=40),
    ]

    trending = ranking.analyze_trends(articles)
    terms = [t.term for t in trending]

    assert 'quantum' in terms
    assert 'cloud' not in terms

    points, matched = ranking.trend_points(articles[0], trending)
    assert points > 0
    assert 'quantum' in matched


def test_score_articles_ranks_by_composite_then_feed_order(article_factory, now) -> None:
    ranking = SourceRankingService()
    freshness = FreshnessScorer()
    strong = article_factory(
        title='Machine learning model from OpenAI sets record',
        domain='openai.com', url='https://openai.com/research/record', hours_old=1, feed_order=2,
    )
    weak = article_factory(
        title='Gardening tips for spring',
        domain='unknown-site.example', summary='Plant tomatoes early.', hours_old=40, feed_order=0,
    )

    scored = ranking.score_articles([(a, freshness.score(a, now)) for a in (weak, strong)])

    assert scored[0].article is strong
    assert scored[0].composite_score > scored[1].composite_score
    assert any('Source authority' in line for line in scored[0].reasoning)
