import unittest

from neuronvault.synthesis.sentence_similarity import sentence_similarity, split_sentences, word_set


class TestSplitSentences(unittest.TestCase):
    def test_split_on_terminal_punctuation(self):
        text = "Use a bounded queue. Measure before tuning! Is it fast enough?! ok."
        self.assertEqual(
            split_sentences(text),
            ["Use a bounded queue", "Measure before tuning", "Is it fast enough"],
        )

    def test_min_length(self):
        self.assertEqual(split_sentences("Short. A much longer sentence.", min_length=10), ["A much longer sentence"])

    def test_empty(self):
        self.assertEqual(split_sentences(""), [])


class TestSentenceSimilarity(unittest.TestCase):
    def test_identical(self):
        self.assertEqual(sentence_similarity("Use a queue", "use a QUEUE"), 1.0)

    def test_partial_overlap(self):
        # {use, a, bounded, queue} vs {use, a, bounded, work, queue}
        self.assertAlmostEqual(sentence_similarity("Use a bounded queue", "Use a bounded work queue"), 0.8)

    def test_no_words(self):
        self.assertEqual(sentence_similarity("...", "!!!"), 0.0)

    def test_word_set_ignores_punctuation(self):
        self.assertEqual(word_set("Hello, world! Hello?"), {"hello", "world"})


if __name__ == '__main__':
    unittest.main()
