"""
Recovery of structured topics from malformed backend output.

The backend is asked for one JSON object but regularly wraps it in code
fences or prose, leaves quotes unescaped inside strings, or gets cut off
mid-object. Each repair stage returns ``Ok`` or ``Retry`` and the stages
degrade from a strict parse down to a placeholder, so ``repair`` always
produces something downstream validation can iterate over.
"""

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from curator.services.category_registry import DEFAULT_CATEGORY
from curator.utils.text_analysis import is_word_char


@dataclass(frozen=True)
class Ok:
    value: Any
    stage: str = ""


@dataclass(frozen=True)
class Retry:
    reason: str


StageResult = Union[Ok, Retry]

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\r?\n?(.*?)```", re.S)
_OPEN_FENCE_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\r?\n?")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_LITERAL_RE = re.compile(r"(?:true|false|null)(?![^\W_])")
_HEX4_RE = re.compile(r"[0-9a-fA-F]{4}")
_ITEM_SPLIT_RE = re.compile(r'(?="headline"\s*:)')

# Output key -> accepted spellings in the raw text
EXTRACTED_FIELDS: Dict[str, Tuple[str, ...]] = {
    'headline': ('headline',),
    'summary': ('summary',),
    'keyTakeaway': ('keyTakeaway', 'key_takeaway'),
    'sourceUrl': ('sourceUrl', 'source_url'),
    'category': ('category',),
    'imagePrompt': ('imagePrompt', 'image_prompt'),
}

PLACEHOLDER_TOPIC: Dict[str, str] = {
    'headline': 'Content temporarily unavailable',
    'summary': 'The generated response could not be parsed into topics.',
    'sourceUrl': '',
    'category': DEFAULT_CATEGORY,
    'imagePrompt': '',
}


@dataclass
class RepairOutcome:
    data: Dict[str, Any]
    stage: str
    notes: List[str] = field(default_factory=list)
    is_placeholder: bool = False

    @property
    def topics(self) -> List[Dict[str, Any]]:
        items = self.data.get('topics')
        if isinstance(items, list):
            return [item for item in items if isinstance(item, dict)]
        if 'headline' in self.data:
            return [self.data]
        return []


def strip_code_fences(text: str) -> StageResult:
    match = _FENCE_RE.search(text)
    if match:
        return Ok(match.group(1).strip(), 'fences')
    # Truncated responses can open a fence and never close it
    stripped = _OPEN_FENCE_RE.sub('', text, count=1)
    if stripped != text:
        return Ok(stripped.strip(), 'fences')
    return Retry("no code fence")


def slice_object(text: str) -> StageResult:
    start = text.find('{')
    if start < 0:
        return Retry("no opening brace")
    end = text.rfind('}')
    if end < start:
        # Keep the tail so truncated objects can still be closed later
        return Ok(text[start:], 'slice')
    return Ok(text[start:end + 1], 'slice')


def parse_direct(text: str) -> StageResult:
    try:
        value = json.loads(text)
    except (ValueError, RecursionError) as e:
        return Retry(f"direct parse failed: {e}")
    if not isinstance(value, dict):
        return Retry(f"expected an object, got {type(value).__name__}")
    return Ok(value, 'direct')


def _next_significant(text: str, start: int) -> Tuple[str, int]:
    i = start
    while i < len(text) and text[i] in ' \t\r\n':
        i += 1
    if i >= len(text):
        return '', i
    return text[i], i


def _quote_closes_string(text: str, index: int) -> bool:
    """
    Decide whether the quote at ``index`` ends the current string.

    A closing quote is followed by a structural character or the end of the
    text. After ``,`` or ``:`` the next token must look like JSON; a letter
    there (in any script, combining marks included) means the quote was part
    of the prose.
    """
    char, pos = _next_significant(text, index + 1)
    if char == '' or char in '}]':
        return True
    if char not in ',:':
        return False
    after, after_pos = _next_significant(text, pos + 1)
    if after == '':
        return True
    if _LITERAL_RE.match(text, after_pos):
        return True
    if is_word_char(after) and not after.isdigit():
        return False
    return True


def escape_string_interiors(text: str) -> str:
    """
    Re-escape stray quotes, raw newlines, tabs and bad backslashes inside
    string values, drop trailing commas and close a truncated object.
    """
    out: List[str] = []
    closers: List[str] = []
    in_string = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if not in_string:
            if ch == '"':
                in_string = True
            elif ch in '{[':
                closers.append('}' if ch == '{' else ']')
            elif ch in '}]':
                if closers:
                    closers.pop()
            elif ch == ',':
                nxt, _ = _next_significant(text, i + 1)
                if nxt in ('}', ']'):
                    i += 1
                    continue
            out.append(ch)
            i += 1
            continue

        if ch == '\\':
            nxt = text[i + 1] if i + 1 < n else ''
            if nxt and nxt in '"\\/bfnrt':
                out.append(ch + nxt)
                i += 2
                continue
            if nxt == 'u' and _HEX4_RE.fullmatch(text, i + 2, i + 6):
                out.append(text[i:i + 6])
                i += 6
                continue
            out.append('\\\\')
        elif ch == '"':
            if _quote_closes_string(text, i):
                in_string = False
                out.append(ch)
            else:
                out.append('\\"')
        elif ch == '\n':
            out.append('\\n')
        elif ch == '\r':
            out.append('\\r')
        elif ch == '\t':
            out.append('\\t')
        else:
            out.append(ch)
        i += 1

    if in_string:
        out.append('"')
    while closers:
        out.append(closers.pop())
    return ''.join(out)


def parse_repaired(text: str) -> StageResult:
    cleaned = _CONTROL_RE.sub('', text)
    repaired = escape_string_interiors(cleaned)
    try:
        value = json.loads(repaired, strict=False)
    except (ValueError, RecursionError) as e:
        return Retry(f"repaired parse failed: {e}")
    if not isinstance(value, dict):
        return Retry(f"expected an object, got {type(value).__name__}")
    return Ok(value, 'repaired')


def _unescape(value: str) -> str:
    return (value.replace('\\"', '"')
                 .replace('\\n', '\n')
                 .replace('\\t', ' ')
                 .replace('\\\\', '\\')
                 .strip())


def _field_pattern(spellings: Sequence[str]) -> re.Pattern:
    names = '|'.join(re.escape(s) for s in spellings)
    # Value runs until the quote that precedes the next key or the end of the item
    return re.compile(
        rf'"(?:{names})"\s*:\s*"(.*?)"\s*(?=,\s*"[A-Za-z_]+"\s*:|[}}\]]|$)',
        re.S,
    )


_FIELD_PATTERNS = {key: _field_pattern(spellings) for key, spellings in EXTRACTED_FIELDS.items()}


def extract_fields(text: str) -> StageResult:
    """Lossy field-by-field reconstruction, one item per ``"headline"`` key."""
    chunks = _ITEM_SPLIT_RE.split(text)[1:]
    topics: List[Dict[str, str]] = []
    for chunk in chunks:
        topic: Dict[str, str] = {}
        for key, pattern in _FIELD_PATTERNS.items():
            match = pattern.search(chunk)
            if match:
                topic[key] = _unescape(match.group(1))
        if topic.get('headline'):
            topics.append(topic)
    if not topics:
        return Retry("no headline fields found")
    return Ok({'topics': topics}, 'extracted')


class ResponseRepairer:
    """
    Runs the repair stages in order and records which one succeeded.
    """

    PARSE_STAGES: Tuple[Tuple[str, Callable[[str], StageResult]], ...] = (
        ('direct', parse_direct),
        ('repaired', parse_repaired),
        ('extracted', extract_fields),
    )

    def __init__(self, placeholder: Optional[Dict[str, Any]] = None):
        self.placeholder = dict(placeholder or PLACEHOLDER_TOPIC)
        self.stage_counts: Counter = Counter()
        self.logger = logging.getLogger(__name__)

    def repair(self, raw: Any) -> RepairOutcome:
        text = raw if isinstance(raw, str) else str(raw or '')
        notes: List[str] = []

        fenced = strip_code_fences(text)
        if isinstance(fenced, Ok):
            text = fenced.value
            notes.append("stripped code fences")

        sliced = slice_object(text)
        if isinstance(sliced, Ok):
            if sliced.value != text:
                notes.append("discarded text outside the outer braces")
            text = sliced.value
        else:
            notes.append(sliced.reason)

        for name, stage in self.PARSE_STAGES:
            result = stage(text)
            if isinstance(result, Ok):
                self.stage_counts[name] += 1
                if name != 'direct':
                    self.logger.warning(f"🔧 Backend response recovered at stage '{name}'")
                return RepairOutcome(data=result.value, stage=name, notes=notes)
            notes.append(result.reason)
            self.logger.debug(f"Repair stage '{name}' gave up: {result.reason}")

        self.stage_counts['placeholder'] += 1
        self.logger.error(f"❌ Could not recover backend response ({len(text)} chars); using placeholder")
        return RepairOutcome(
            data={'topics': [dict(self.placeholder)]},
            stage='placeholder',
            notes=notes,
            is_placeholder=True,
        )


def repair_json(raw: Any) -> Dict[str, Any]:
    """Shortcut returning only the recovered object."""
    return ResponseRepairer().repair(raw).data
