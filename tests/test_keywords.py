"""Tests for RAKE keyword extraction."""

from mneme.core.keywords import STOP_WORDS, extract_keywords


class TestExtractKeywords:
    def test_blank_input(self):
        assert extract_keywords("") == []
        assert extract_keywords("   \n ") == []
        assert extract_keywords(None) == []

    def test_stop_words_split_phrases(self):
        keywords = extract_keywords("Rust ownership and the borrow checker", 5)
        assert "rust ownership" in keywords
        assert "borrow checker" in keywords
        assert not any(w in STOP_WORDS for k in keywords for w in k.split())

    def test_longer_phrases_score_higher(self):
        # "memory safety guarantees" has degree 2 per word, beats single words
        keywords = extract_keywords("Memory safety guarantees. Speed. Tooling.", 3)
        assert keywords[0] == "memory safety guarantees"

    def test_top_n_limits_output(self):
        text = "alpha beta. gamma delta. epsilon zeta. theta iota. kappa lambda. sigma omega."
        assert len(extract_keywords(text, 2)) == 2
        assert extract_keywords(text, 0) == []

    def test_sentence_delimiters(self):
        keywords = extract_keywords("tokio runtime; async traits: pinning\nfutures", 10)
        assert "tokio runtime" in keywords
        assert "async traits" in keywords
        assert "pinning" in keywords
        assert "futures" in keywords

    def test_short_words_skipped(self):
        keywords = extract_keywords("go vs rust", 5)
        assert keywords == ["rust"]

    def test_repeated_phrase_appears_once(self):
        keywords = extract_keywords("rust ownership. rust ownership. cargo", 5)
        assert keywords.count("rust ownership") == 1

    def test_deterministic_ordering(self):
        text = (
            "Kafka consumers rebalance. Postgres vacuum tuning. Redis eviction policy. "
            "Kafka partitions. Terraform state locking."
        )
        first = extract_keywords(text, 5)
        for _ in range(20):
            assert extract_keywords(text, 5) == first

    def test_ties_keep_encounter_order(self):
        # single-word phrases all score 1.0
        assert extract_keywords("zebra. apple. mango.", 3) == ["zebra", "apple", "mango"]
