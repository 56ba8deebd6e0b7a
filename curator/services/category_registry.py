"""
Append-only registry of topic categories.

Known categories ship with a label and emoji. Categories first seen in
backend output are inserted once and keep their id for the life of the
registry; nothing is ever renamed or removed.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional


DEFAULT_CATEGORY = "technology"
DEFAULT_EMOJI = "📄"

KNOWN_CATEGORIES: Dict[str, tuple] = {
    'research': ('Research', '🔬'),
    'product': ('Product', '📦'),
    'business': ('Business', '💼'),
    'policy': ('Policy', '🏛️'),
    'security': ('Security', '🔒'),
    'fun': ('Fun', '🎉'),
    'health': ('Health', '🏥'),
    'technology': ('Technology', '💻'),
    'science': ('Science', '🧪'),
    'innovation': ('Innovation', '💡'),
    'ai': ('AI', '🤖'),
    'analysis': ('Analysis', '📊'),
    'enterprise': ('Enterprise', '🏢'),
    'consumer': ('Consumer', '🛍️'),
    'development': ('Development', '⚙️'),
    'news': ('News', '📰'),
    'education': ('Education', '🎓'),
}

CATEGORY_ALIASES: Dict[str, str] = {
    'fintech': 'business',
    'startup': 'business',
    'startups': 'business',
    'funding': 'business',
    'investment': 'business',
    'healthcare': 'health',
    'medical': 'health',
    'biotech': 'health',
    'pharma': 'health',
    'cybersecurity': 'security',
    'privacy': 'security',
    'data-protection': 'security',
    'machine-learning': 'ai',
    'ml': 'ai',
    'artificial-intelligence': 'ai',
    'deep-learning': 'ai',
    'neural-networks': 'ai',
    'robotics': 'ai',
    'automation': 'ai',
    'tech': 'technology',
    'software': 'technology',
    'hardware': 'technology',
    'mobile': 'technology',
    'web': 'development',
    'programming': 'development',
    'coding': 'development',
    'devops': 'development',
    'cloud': 'enterprise',
    'saas': 'enterprise',
    'corporate': 'enterprise',
    'b2b': 'enterprise',
    'gaming': 'consumer',
    'entertainment': 'consumer',
    'social': 'consumer',
    'media': 'consumer',
}


@dataclass
class CategoryInfo:
    id: str
    label: str
    emoji: str
    usage_count: int = 0
    dynamic: bool = False


def normalize_category(category: str) -> str:
    """Lower-case slug with single hyphens between alphanumeric runs."""
    slug = re.sub(r'[^a-z0-9-]', '-', (category or '').strip().lower())
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-')


class CategoryRegistry:
    """
    Maps free-form category strings to canonical ids.
    """

    def __init__(self, default_category: str = DEFAULT_CATEGORY, use_aliases: bool = True):
        self.logger = logging.getLogger(__name__)
        self.use_aliases = use_aliases
        self._categories: Dict[str, CategoryInfo] = {
            key: CategoryInfo(id=key, label=label, emoji=emoji)
            for key, (label, emoji) in KNOWN_CATEGORIES.items()
        }
        self.default_category = normalize_category(default_category) or DEFAULT_CATEGORY
        if self.default_category not in self._categories:
            self._insert(self.default_category, default_category)

    def __contains__(self, category_id: str) -> bool:
        return category_id in self._categories

    def __len__(self) -> int:
        return len(self._categories)

    def normalize(self, category: str) -> str:
        slug = normalize_category(category)
        if self.use_aliases:
            slug = CATEGORY_ALIASES.get(slug, slug)
        return slug

    def resolve(self, category: Optional[str]) -> str:
        """Canonical id for ``category``, inserting it if it has never been seen."""
        slug = self.normalize(category or '')
        if not slug:
            slug = self.default_category
        info = self._categories.get(slug)
        if info is None:
            info = self._insert(slug, category or slug)
        info.usage_count += 1
        return info.id

    def _insert(self, slug: str, raw: str) -> CategoryInfo:
        label = ' '.join(w.capitalize() for w in re.split(r'[-_\s]+', raw.strip()) if w) or slug
        info = CategoryInfo(id=slug, label=label, emoji=DEFAULT_EMOJI, dynamic=True)
        self._categories[slug] = info
        self.logger.info(f"🆕 Registered new category: {slug} -> {label}")
        return info

    def get(self, category_id: str) -> Optional[CategoryInfo]:
        return self._categories.get(category_id)

    def all_categories(self) -> List[CategoryInfo]:
        """Known categories first, then dynamic ones by usage."""
        known = [c for c in self._categories.values() if not c.dynamic]
        dynamic = sorted((c for c in self._categories.values() if c.dynamic), key=lambda c: -c.usage_count)
        return known + dynamic
