##########################################################################################
#
# Script name: test_category_registry.py
#
# Description: Category normalization, aliases and append-only registration.
#
##########################################################################################

from curator.services.category_registry import DEFAULT_CATEGORY, CategoryRegistry, normalize_category


def test_normalize_category_slugs() -> None:
    assert normalize_category('  Machine Learning ') == 'machine-learning'
    assert normalize_category('AI/ML!!') == 'ai-ml'
    assert normalize_category('') == ''


def test_aliases_resolve_to_canonical_ids() -> None:
    registry = CategoryRegistry()
    assert registry.resolve('ML') == 'ai'
    assert registry.resolve('Machine Learning') == 'ai'
    assert registry.resolve('FinTech') == 'business'
    assert registry.resolve('research') == 'research'


def test_missing_category_uses_default() -> None:
    registry = CategoryRegistry()
    assert registry.resolve(None) == DEFAULT_CATEGORY
    assert registry.resolve('   ') == DEFAULT_CATEGORY


def test_unknown_categories_are_registered_once() -> None:
    registry = CategoryRegistry()
    size = len(registry)

    assert registry.resolve('Climate Tech') == 'climate-tech'
    assert registry.resolve('climate tech') == 'climate-tech'

    assert len(registry) == size + 1
    info = registry.get('climate-tech')
    assert info.dynamic
    assert info.label == 'Climate Tech'
    assert info.usage_count == 2
    assert registry.all_categories()[-1].id == 'climate-tech'


def test_aliases_can_be_disabled() -> None:
    registry = CategoryRegistry(use_aliases=False)
    assert registry.resolve('ml') == 'ml'
    assert 'ml' in registry
