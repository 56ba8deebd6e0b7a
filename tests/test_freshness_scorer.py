##########################################################################################
#
# Script name: test_freshness_scorer.py
#
# Description: Age decay bands, strict-mode penalty and the freshness floor.
#
##########################################################################################

import pytest

from curator.services.freshness_scorer import FreshnessScorer


AGES = [0, 1, 5.9, 6, 6.1, 11, 12, 13, 23, 24, 25, 36, 47, 48, 49, 60, 72, 73, 100, 500]


@pytest.mark.parametrize('strict', [False, True])
def test_score_never_increases_with_age(strict: bool) -> None:
    scorer = FreshnessScorer(strict=strict)
    scores = [scorer.score_age(age) for age in AGES]
    assert all(later <= earlier for earlier, later in zip(scores, scores[1:]))
    assert all(0 <= s <= 100 for s in scores)


def test_band_values() -> None:
    scorer = FreshnessScorer()
    assert scorer.score_age(1) == 95
    assert scorer.score_age(10) == 85
    assert scorer.score_age(20) == 60
    assert scorer.score_age(40) == 30
    assert scorer.score_age(70) == 10
    assert scorer.score_age(200) == 5


def test_strict_mode_penalizes_age_past_a_day() -> None:
    relaxed = FreshnessScorer()
    strict = FreshnessScorer(strict=True)
    assert strict.score_age(12) == relaxed.score_age(12)
    assert strict.score_age(30) < relaxed.score_age(30)
    assert strict.score_age(72) == 0


def test_filter_fresh_applies_hard_floor(article_factory, now) -> None:
    scorer = FreshnessScorer(min_score=20)
    fresh = article_factory(title='Fresh', hours_old=3)
    day_old = article_factory(title='Day old', hours_old=30)
    stale = article_factory(title='Stale', hours_old=100)

    kept, dropped = scorer.filter_fresh([fresh, day_old, stale], now)

    assert [a.title for a, _ in kept] == ['Fresh', 'Day old']
    assert kept[0][1].category == 'fresh'
    assert dropped == [stale]


def test_future_dates_count_as_just_published(article_factory, now) -> None:
    scorer = FreshnessScorer()
    article = article_factory(hours_old=-5)
    assert scorer.score(article, now).age_hours == 0
