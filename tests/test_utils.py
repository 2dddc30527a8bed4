from mcpchat.utils import WordChunker


def test_word_chunker_emits_whole_words() -> None:
    chunker = WordChunker()
    assert chunker.feed("Hel") == []
    assert chunker.feed("lo wor") == ["Hello "]
    assert chunker.feed("ld, again ") == ["world, ", "again "]
    assert chunker.flush() == []


def test_word_chunker_flushes_remainder() -> None:
    chunker = WordChunker()
    assert chunker.feed("  leading") == []
    assert chunker.flush() == ["  leading"]
    assert chunker.flush() == []
