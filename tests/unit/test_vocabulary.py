# pylint: disable=missing-module-docstring,missing-function-docstring

from transcription.vocabulary import VocabularyReplacer


def test_whole_word_case_insensitive_replacement():
    vocab = VocabularyReplacer({"pie torch": "PyTorch", "cube": "kube"})

    assert vocab.apply("I use Pie Torch daily") == "I use PyTorch daily"
    # "cubes" is a different word
    assert vocab.apply("cube and cubes") == "kube and cubes"


def test_longer_spoken_form_wins():
    vocab = VocabularyReplacer({"new": "NEW", "new york": "New York"})
    assert vocab.apply("new york is new") == "New York is NEW"


def test_empty_vocabulary_is_identity():
    vocab = VocabularyReplacer({})
    assert not vocab
    assert vocab.apply("unchanged") == "unchanged"
