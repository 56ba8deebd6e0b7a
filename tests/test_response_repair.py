##########################################################################################
#
# Script name: test_response_repair.py
#
# Description: Staged recovery of topic JSON from malformed backend output.
#
##########################################################################################

import pytest

from curator.services.response_repair import (
    PLACEHOLDER_TOPIC,
    Ok,
    ResponseRepairer,
    Retry,
    escape_string_interiors,
    repair_json,
    slice_object,
    strip_code_fences,
)


@pytest.fixture
def repairer() -> ResponseRepairer:
    return ResponseRepairer()


def test_fenced_json_parses_directly(repairer) -> None:
    outcome = repairer.repair('```json\n{"a": 1}\n```')
    assert outcome.data == {'a': 1}
    assert outcome.stage == 'direct'
    assert not outcome.is_placeholder
    assert 'stripped code fences' in outcome.notes


def test_prose_around_object_is_discarded(repairer) -> None:
    raw = 'Sure! Here are your topics:\n{"topics": [{"headline": "Chips rally", "summary": "Up"}]}\nEnjoy.'
    outcome = repairer.repair(raw)
    assert outcome.stage == 'direct'
    assert outcome.topics == [{'headline': 'Chips rally', 'summary': 'Up'}]


def test_plain_prose_falls_back_to_placeholder(repairer) -> None:
    outcome = repairer.repair("I'm sorry, I can't help with that request.")
    assert outcome.is_placeholder
    assert outcome.stage == 'placeholder'
    assert outcome.topics == [PLACEHOLDER_TOPIC]
    assert repairer.stage_counts['placeholder'] == 1


def test_trailing_commas_are_removed(repairer) -> None:
    outcome = repairer.repair('{"topics": [{"headline": "A headline here", "summary": "S",},],}')
    assert outcome.stage == 'repaired'
    assert outcome.topics == [{'headline': 'A headline here', 'summary': 'S'}]


def test_unescaped_interior_quotes(repairer) -> None:
    outcome = repairer.repair('{"headline": "He said "hello" today", "summary": "ok"}')
    assert outcome.stage == 'repaired'
    assert outcome.data['headline'] == 'He said "hello" today'
    assert outcome.topics[0]['summary'] == 'ok'


def test_interior_quotes_in_devanagari_text(repairer) -> None:
    raw = '{"headline": "मोदी ने कहा "नमस्ते", और चले गए", "summary": "x"}'
    outcome = repairer.repair(raw)
    assert outcome.stage == 'repaired'
    assert outcome.data['headline'] == 'मोदी ने कहा "नमस्ते", और चले गए'


def test_raw_newlines_inside_strings(repairer) -> None:
    outcome = repairer.repair('{"headline": "Line one\nline two", "summary": "ok"}')
    assert outcome.data['headline'] == 'Line one\nline two'


def test_truncated_object_is_closed(repairer) -> None:
    raw = '{"topics": [{"headline": "Chip makers rally", "summary": "Shares rose after'
    outcome = repairer.repair(raw)
    assert outcome.stage == 'repaired'
    assert outcome.topics == [{'headline': 'Chip makers rally', 'summary': 'Shares rose after'}]


def test_unclosed_fence_is_stripped(repairer) -> None:
    outcome = repairer.repair('```json\n{"topics": [{"headline": "Cut off", "summary": "mid')
    assert outcome.topics[0]['headline'] == 'Cut off'


def test_field_extraction_when_structure_is_broken(repairer) -> None:
    raw = (
        '{"topics": [{"headline": "First story", "summary": "One", "sourceUrl": "https://a.example/1"} '
        '{"headline": "Second story", "summary": "Two", "category": "ai"}]}'
    )
    outcome = repairer.repair(raw)
    assert outcome.stage == 'extracted'
    assert [t['headline'] for t in outcome.topics] == ['First story', 'Second story']
    assert outcome.topics[0]['sourceUrl'] == 'https://a.example/1'
    assert outcome.topics[1]['category'] == 'ai'


@pytest.mark.parametrize('raw', [None, 12345, '', '[1, 2, 3]'])
def test_non_object_inputs_never_raise(repairer, raw) -> None:
    outcome = repairer.repair(raw)
    assert outcome.is_placeholder
    assert len(outcome.topics) == 1


def test_stage_helpers() -> None:
    assert isinstance(strip_code_fences('no fences here'), Retry)
    assert slice_object('xx {"a": 1} yy') == Ok('{"a": 1}', 'slice')
    assert isinstance(slice_object('no braces'), Retry)
    assert escape_string_interiors('{"a": "b\\u00e9"}') == '{"a": "b\\u00e9"}'
    assert escape_string_interiors('{"a": "C:\\path"}') == '{"a": "C:\\\\path"}'


def test_repair_json_shortcut() -> None:
    assert repair_json('{"ok": true}') == {'ok': True}
