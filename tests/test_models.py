##########################################################################################
#
# Script name: test_models.py
#
# Description: Article keys and topic (de)serialization.
#
##########################################################################################

from dataclasses import FrozenInstanceError, replace

import pytest

from curator.models.content import DIVERSITY_PRESETS, Topic


def test_article_dedupe_key_and_text(article_factory) -> None:
    linked = article_factory(title='Linked story', url='https://a.example/1', summary='Body')
    linkless = article_factory(title='  Linkless Story ', url='')
    assert linked.dedupe_key == 'https://a.example/1'
    assert linkless.dedupe_key == 'title:linkless story'
    assert 'Linked story' in linked.text
    assert 'Body' in linked.text


def test_article_is_immutable_and_changes_go_through_replace(article_factory) -> None:
    article = article_factory(title='Frozen story', url='https://a.example/frozen')
    with pytest.raises(FrozenInstanceError):
        article.content = 'changed'
    updated = replace(article, content='Full text', feed_order=3)
    assert article.content is None
    assert updated.content == 'Full text'
    assert updated.feed_order == 3


def test_topic_accepts_camel_and_snake_case() -> None:
    camel = Topic.from_dict({'headline': ' A ', 'summary': 'B', 'sourceUrl': 'u', 'keyTakeaway': 'k'})
    snake = Topic.from_dict({'title': 'A', 'description': 'B', 'source_url': 'u', 'key_takeaway': 'k'})
    assert (camel.headline, camel.source_url, camel.key_takeaway) == ('A', 'u', 'k')
    assert (snake.headline, snake.summary, snake.source_url) == ('A', 'B', 'u')
    assert Topic.from_dict('not a dict').headline == ''


def test_topic_to_dict_omits_unset_optionals() -> None:
    topic = Topic(headline='H', summary='S', source_url='u', category='ai')
    assert topic.to_dict() == {'headline': 'H', 'summary': 'S', 'sourceUrl': 'u', 'category': 'ai', 'imagePrompt': ''}
    topic.low_confidence = True
    topic.alignment_score = 0.12345
    data = topic.to_dict()
    assert data['lowConfidence'] is True
    assert data['alignmentScore'] == 0.123


def test_diversity_presets_loosen_monotonically() -> None:
    for tighter, looser in zip(DIVERSITY_PRESETS, DIVERSITY_PRESETS[1:]):
        assert looser.max_per_source >= tighter.max_per_source
        assert looser.max_per_category >= tighter.max_per_category
        assert looser.max_per_domain >= tighter.max_per_domain
        assert looser.diversity_weight <= tighter.diversity_weight


def test_scored_article_to_dict(scored_factory) -> None:
    scored = scored_factory(71.239, title='Scored story', url='https://a.example/s')
    data = scored.to_dict()
    assert data['url'] == 'https://a.example/s'
    assert data['scores']['composite'] == 71.24
