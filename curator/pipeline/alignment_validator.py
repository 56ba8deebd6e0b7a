"""
Source alignment validation for generated topics.

Checks every generated topic against the articles it was generated from so
that nothing reaches rendering with a made-up link or claims the source does
not support.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from curator.models.content import Article, ScoredArticle, Topic
from curator.services.category_registry import CategoryRegistry, normalize_category
from curator.utils.text_analysis import contains_phrase, word_overlap


SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"


@dataclass
class InvalidTopic:
    topic: Topic
    issues: List[str]
    severity: str

    def to_dict(self) -> Dict[str, Any]:
        return {"topic": self.topic.to_dict(), "issues": list(self.issues), "severity": self.severity}


@dataclass
class Substitution:
    """A topic whose source URL was replaced with a selected article's URL"""
    headline: str
    original_url: str
    replacement_url: str
    reason: str
    similarity: float = 0.0


@dataclass
class ValidationReport:
    valid_topics: List[Topic] = field(default_factory=list)
    invalid_topics: List[InvalidTopic] = field(default_factory=list)
    substitutions: List[Substitution] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validTopics": [t.to_dict() for t in self.valid_topics],
            "invalidTopics": [t.to_dict() for t in self.invalid_topics],
            "substitutions": [s.__dict__ for s in self.substitutions],
            "stats": self.stats,
        }


class AlignmentValidator:
    """
    Validates generated topics against the selected articles.

    Only ``error`` issues make a topic invalid, unless ``strict_mode`` is set,
    in which case any issue does. Every rejection and every URL substitution
    is recorded in the report.
    """

    EXAGGERATION_MARKERS = (
        "revolutionary", "breakthrough", "unprecedented", "game-changing", "transforms", "disrupts",
    )

    # (claim in topic, opposite claim in source)
    CONTRADICTION_PAIRS = (
        ("is", "is not"),
        ("can", "cannot"),
        ("will", "will not"),
        ("has", "has not"),
        ("does", "does not"),
    )

    def __init__(self,
                 registry: Optional[CategoryRegistry] = None,
                 strict_mode: bool = False,
                 min_alignment: float = 0.3,
                 min_headline_length: int = 10,
                 max_headline_length: int = 100):
        self.registry = registry or CategoryRegistry()
        self.strict_mode = strict_mode
        self.min_alignment = min_alignment
        self.min_headline_length = min_headline_length
        self.max_headline_length = max_headline_length
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _as_article(item: Union[Article, ScoredArticle]) -> Article:
        return item.article if isinstance(item, ScoredArticle) else item

    @staticmethod
    def _source_text(article: Article) -> str:
        return article.text

    def _best_unused(self,
                     topic: Topic,
                     articles: Sequence[Article],
                     used: Set[str]) -> Optional[Tuple[Article, float]]:
        """Most lexically similar unused article, else the first unused one."""
        unused = [a for a in articles if a.canonical_url not in used]
        if not unused:
            return None
        topic_text = f"{topic.headline} {topic.summary}"
        best, best_score = unused[0], 0.0
        for article in unused:
            score = word_overlap(topic_text, self._source_text(article))
            if score > best_score:
                best, best_score = article, score
        return best, best_score

    def _find_contradictions(self, topic: Topic, source_text: str) -> List[str]:
        found = []
        for positive, negative in self.CONTRADICTION_PAIRS:
            if (contains_phrase(topic.summary, positive)
                    and not contains_phrase(topic.summary, negative)
                    and contains_phrase(source_text, negative)):
                found.append(f"{positive} vs {negative}")
        return found

    def _check_alignment(self, topic: Topic, article: Article, issues: List[str]) -> bool:
        source_text = self._source_text(article)
        ratio = word_overlap(topic.headline, source_text)
        topic.alignment_score = ratio
        aligned = True
        if ratio < self.min_alignment:
            topic.low_confidence = True
            issues.append(
                f"Low content alignment: headline doesn't match article content "
                f"({round(ratio * 100)}% keyword match)"
            )
            aligned = False

        contradictions = self._find_contradictions(topic, source_text)
        if contradictions:
            issues.append(f"Potential contradictions: {', '.join(contradictions)}")
            aligned = False

        topic_text = f"{topic.headline} {topic.summary}"
        if any(contains_phrase(topic_text, w) for w in self.EXAGGERATION_MARKERS):
            if not any(contains_phrase(source_text, w) for w in self.EXAGGERATION_MARKERS):
                issues.append("Potential exaggeration: strong claims not supported by source article")
                aligned = False
        return aligned

    def _check_quality(self, topic: Topic, issues: List[str]) -> bool:
        """Append quality issues; returns False when one of them is an error."""
        ok = True
        headline = topic.headline.strip()
        if not headline:
            issues.append("Headline is missing")
            ok = False
        elif len(headline) < self.min_headline_length:
            issues.append(f"Headline too short ({len(headline)} chars)")
        elif len(headline) > self.max_headline_length:
            issues.append(f"Headline too long ({len(headline)} chars)")
        if not topic.summary.strip():
            issues.append("Summary is missing")
            ok = False
        return ok

    def _reject_placeholder(self, topics: Sequence[Union[Topic, Dict[str, Any]]]) -> ValidationReport:
        report = ValidationReport()
        for item in topics:
            topic = replace(item) if isinstance(item, Topic) else Topic.from_dict(item)
            report.invalid_topics.append(InvalidTopic(
                topic=topic,
                issues=["Unrecoverable backend output; placeholder is not publishable"],
                severity=SEVERITY_ERROR,
            ))
        report.stats = {
            "total_topics": len(report.invalid_topics),
            "valid_topics": 0,
            "placeholder": True,
        }
        self.logger.warning(f"🔴 Rejected {len(report.invalid_topics)} placeholder topic(s) from unrecoverable output")
        return report

    def validate(self,
                 topics: Sequence[Union[Topic, Dict[str, Any]]],
                 selected: Sequence[Union[Article, ScoredArticle]],
                 placeholder: bool = False) -> ValidationReport:
        """
        Validate topics against the selected articles.

        With ``placeholder`` set the topics stand in for unrecoverable backend
        output: every one is rejected with error severity and no source URL is
        reassigned.
        """
        if placeholder:
            return self._reject_placeholder(topics)

        articles = [self._as_article(s) for s in selected]
        by_url: Dict[str, Article] = {}
        for article in articles:
            by_url.setdefault(article.canonical_url, article)

        # Work on copies so callers keep the backend's original topics
        working = [replace(t) if isinstance(t, Topic) else Topic.from_dict(t) for t in topics]
        issues_by_index: Dict[int, List[str]] = {i: [] for i in range(len(working))}
        errors: Set[int] = set()
        report = ValidationReport()
        url_stats = {"valid": 0, "invalid": 0, "substituted": 0}
        alignment_stats = {"aligned": 0, "misaligned": 0}
        category_stats = {"consistent": 0, "inconsistent": 0}

        # Exact matches claim their article first so reassignment never steals them
        used: Set[str] = set()
        needs_reassignment: List[Tuple[int, str]] = []
        for i, topic in enumerate(working):
            url = topic.source_url.strip()
            if url in by_url and url not in used:
                topic.source_url = url
                used.add(url)
                url_stats["valid"] += 1
            elif url in by_url:
                needs_reassignment.append((i, "duplicate source URL"))
            else:
                needs_reassignment.append((i, "source URL not among selected articles"))

        for i, reason in needs_reassignment:
            topic = working[i]
            original = topic.source_url
            url_stats["invalid"] += 1
            match = self._best_unused(topic, articles, used)
            if match is None:
                issues_by_index[i].append(f"{reason[0].upper()}{reason[1:]} and no unused article left: {original or '(empty)'}")
                errors.add(i)
                continue
            article, similarity = match
            used.add(article.canonical_url)
            topic.source_url = article.canonical_url
            url_stats["substituted"] += 1
            report.substitutions.append(Substitution(
                headline=topic.headline,
                original_url=original,
                replacement_url=article.canonical_url,
                reason=reason,
                similarity=round(similarity, 3),
            ))
            issues_by_index[i].append(f"Source URL replaced ({reason}): {original or '(empty)'} -> {article.canonical_url}")
            self.logger.info(f"🔗 Reassigned '{topic.headline[:60]}' to {article.canonical_url} ({reason})")

        for i, topic in enumerate(working):
            issues = issues_by_index[i]

            article = None if i in errors else by_url.get(topic.source_url)
            if article is not None:
                if self._check_alignment(topic, article, issues):
                    alignment_stats["aligned"] += 1
                else:
                    alignment_stats["misaligned"] += 1

            raw_category = topic.category
            resolved = self.registry.resolve(raw_category)
            if raw_category and normalize_category(raw_category) == resolved:
                category_stats["consistent"] += 1
            else:
                category_stats["inconsistent"] += 1
                if not raw_category.strip():
                    issues.append(f"Category missing; defaulted to {resolved}")
            topic.category = resolved

            if not self._check_quality(topic, issues):
                errors.add(i)

            severity = SEVERITY_ERROR if i in errors else SEVERITY_WARNING
            is_valid = not issues if self.strict_mode else severity != SEVERITY_ERROR
            if is_valid:
                report.valid_topics.append(topic)
            else:
                report.invalid_topics.append(InvalidTopic(topic=topic, issues=issues, severity=severity))

        report.stats = {
            "total_topics": len(working),
            "valid_topics": len(report.valid_topics),
            "url_validation": url_stats,
            "content_alignment": alignment_stats,
            "category_consistency": category_stats,
        }

        self.logger.info(
            f"✅ Alignment validation complete: {len(report.valid_topics)}/{len(working)} topics passed"
        )
        for invalid in report.invalid_topics:
            marker = "🔴" if invalid.severity == SEVERITY_ERROR else "🟡"
            self.logger.warning(f"  {marker} \"{invalid.topic.headline}\": {'; '.join(invalid.issues)}")
        return report
