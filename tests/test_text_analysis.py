##########################################################################################
#
# Script name: test_text_analysis.py
#
# Description: Tokenizing, keyword overlap and whole-word matching across scripts.
#
##########################################################################################

from curator.utils.text_analysis import contains_phrase, extract_keywords, tokenize, word_overlap


HINDI = 'भारत में कृत्रिम बुद्धिमत्ता का विकास'


def test_tokenize_keeps_devanagari_vowel_signs_inside_words() -> None:
    assert tokenize(HINDI) == ['भारत', 'में', 'कृत्रिम', 'बुद्धिमत्ता', 'का', 'विकास']


def test_tokenize_keeps_inner_hyphens_and_drops_underscores() -> None:
    assert tokenize("State-of-the-art model's rollout_plan -- done") == [
        'state-of-the-art', "model's", 'rollout', 'plan', 'done',
    ]


def test_word_overlap_on_identical_devanagari_text_is_full() -> None:
    assert extract_keywords(HINDI) == ['भारत', 'कृत्रिम', 'बुद्धिमत्ता', 'विकास']
    assert word_overlap(HINDI, HINDI) == 1.0


def test_word_overlap_counts_shared_keywords() -> None:
    assert word_overlap('Nvidia unveils datacenter chips', 'New chips from Nvidia') == 0.5
    assert word_overlap('', 'anything') == 0.0


def test_contains_phrase_respects_word_boundaries_in_any_script() -> None:
    assert contains_phrase('The model is not ready', 'is not')
    assert not contains_phrase('This island', 'is')
    assert contains_phrase(HINDI, 'विकास')
    # a vowel sign after the match means it is only part of a word
    assert not contains_phrase('कृत्रिम', 'कृत्र')
    assert not contains_phrase('anything', '')
