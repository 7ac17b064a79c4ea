"""
Sentence splitting and word-set similarity used by the weighted merge.

PROMPT> python -m neuronvault.synthesis.sentence_similarity
"""
import re

_SENTENCE_BOUNDARY = re.compile(r"[.!?]+\s+")
_TRAILING_PUNCTUATION = re.compile(r"[.!?]+$")
_NON_WORD = re.compile(r"\W+")


def split_sentences(text: str, min_length: int = 5) -> list[str]:
    """
    Split on terminal punctuation followed by whitespace.

    Trailing punctuation is removed from each sentence, and sentences shorter
    than `min_length` characters are dropped.
    """
    sentences = []
    for part in _SENTENCE_BOUNDARY.split(text or ""):
        sentence = _TRAILING_PUNCTUATION.sub("", part.strip()).strip()
        if len(sentence) >= min_length:
            sentences.append(sentence)
    return sentences


def word_set(sentence: str) -> set[str]:
    return {word for word in _NON_WORD.split(sentence.lower()) if word}


def sentence_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the lowercase word sets, in [0, 1]."""
    words_a = word_set(a)
    words_b = word_set(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


if __name__ == "__main__":
    text = "Use a bounded queue. Measure before tuning! Is it fast enough? ok."
    print(split_sentences(text))
    print(sentence_similarity("Use a bounded queue", "Use a bounded work queue"))
