##########################################################################################
#
# Script name: test_deduplication.py
#
# Description: Duplicate collapsing by canonical URL, then title.
#
##########################################################################################

from curator.services.deduplication_service import DeduplicationService, deduplicate


def test_output_never_repeats_a_canonical_url(article_factory) -> None:
    articles = [
        article_factory(title='First copy', url='https://a.example/story', source_id='one'),
        article_factory(title='Second copy', url='https://a.example/story', source_id='two'),
        article_factory(title='Different story', url='https://a.example/other'),
        article_factory(title='Third copy', url='https://a.example/story', source_id='three'),
    ]

    unique = deduplicate(articles)

    urls = [a.canonical_url for a in unique]
    assert len(urls) == len(set(urls))
    assert [a.title for a in unique] == ['First copy', 'Different story']


def test_articles_without_links_fall_back_to_title(article_factory) -> None:
    articles = [
        article_factory(title='Same Headline', url=''),
        article_factory(title='  same headline ', url=''),
        article_factory(title='Another headline', url=''),
    ]

    assert len(deduplicate(articles)) == 2


def test_service_keeps_running_stats(article_factory) -> None:
    service = DeduplicationService()
    articles = [
        article_factory(title='Story', url='https://a.example/1'),
        article_factory(title='Story again', url='https://a.example/1'),
        article_factory(title='Linkless', url=''),
        article_factory(title='linkless', url=''),
    ]

    unique = service.deduplicate(articles)

    assert len(unique) == 2
    assert service.stats == {'input': 4, 'output': 2, 'url_duplicates': 1, 'title_duplicates': 1}
