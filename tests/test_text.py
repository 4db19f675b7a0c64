"""Tests for anamnesis/text.py."""

from anamnesis.text import (
    analyze_sentiment,
    analyze_text,
    categorize_preference,
    extract_emotions,
    extract_entities,
    extract_facts,
    extract_key_sentences,
    extract_keywords,
    extract_preferences,
    extract_questions,
    extract_requests,
    extract_topics,
    jaccard,
    overlap_ratio,
    stem,
    text_similarity,
    tokenize,
)


class TestTokenize:
    def test_lowercases_and_strips_punctuation(self):
        assert tokenize("Hello, World!") == ["hello", "world"]

    def test_empty(self):
        assert tokenize("   ") == []


class TestKeywords:
    def test_drops_stop_words(self):
        keywords = extract_keywords("The quick brown fox jumps over the lazy dog")
        assert "quick" in keywords
        assert "brown" in keywords
        assert "the" not in keywords

    def test_stems_plurals(self):
        assert stem("servers") == "server"
        assert stem("class") == "class"

    def test_most_frequent_first(self):
        keywords = extract_keywords("python python python rust rust golang")
        assert keywords[0] == "python"

    def test_respects_limit(self):
        text = " ".join(f"word{i}" for i in range(30))
        assert extract_keywords(text, max_keywords=5) == []  # non-alpha tokens are skipped
        assert len(extract_keywords("alpha bravo charlie delta echo foxtrot", max_keywords=3)) == 3


class TestEntities:
    def test_person_and_date(self):
        entities = {e.name: e for e in extract_entities("John Smith signed it on 2024-01-15")}
        assert entities["John Smith"].type == "person"
        assert entities["2024-01-15"].type == "date"

    def test_repeated_mentions_are_counted(self):
        entities = {e.name: e for e in extract_entities("Python is fun. I like Python.")}
        assert entities["Python"].mentions == 2

    def test_topics_start_with_entity_types(self):
        topics = extract_topics("John Smith reviewed the deployment pipeline")
        assert topics[0] == "person"


class TestSentiment:
    def test_positive(self):
        assert analyze_sentiment("I love this, it is great") > 0

    def test_negative(self):
        assert analyze_sentiment("this is terrible and awful") < 0

    def test_neutral(self):
        assert analyze_sentiment("the table has four legs") == 0.0

    def test_bounded(self):
        score = analyze_sentiment("hate hate hate hate awful terrible")
        assert -1.0 <= score <= 1.0

    def test_emotions(self):
        emotions = extract_emotions("I am so frustrated and worried about this")
        assert "angry" in emotions
        assert "anxious" in emotions


class TestExtraction:
    def test_questions(self):
        assert extract_questions("How do I reset my password? Thanks.") == ["How do I reset my password"]

    def test_requests(self):
        assert "help me with the report" in extract_requests("Can you help me with the report?")

    def test_facts_skip_questions(self):
        facts = extract_facts("Paris is the capital of France. What is that about?")
        assert facts == ["Paris is the capital of France"]

    def test_preferences(self):
        prefs = extract_preferences("I prefer dark mode in my editor.")
        assert prefs == [{"category": "technology", "preference": "dark mode in my editor", "strength": 0.8}]

    def test_negative_preference_is_weak(self):
        prefs = extract_preferences("I hate waiting in long queues")
        assert prefs[0]["strength"] == 0.2

    def test_categorize_default(self):
        assert categorize_preference("quiet mornings") == "general"

    def test_analyze_text_keys(self):
        info = analyze_text("Please show me the logs?")
        assert set(info) == {"facts", "questions", "requests", "emotions", "entities", "preferences"}


class TestSimilarity:
    def test_jaccard_empty(self):
        assert jaccard([], []) == 0.0

    def test_identical_texts(self):
        assert text_similarity("dark mode please", "Dark mode, please") == 1.0

    def test_overlap_ratio_uses_larger_set(self):
        assert overlap_ratio({"a", "b"}, {"a"}) == 0.5

    def test_key_sentences_short_content_unchanged(self):
        assert extract_key_sentences("Just one sentence here.") == "Just one sentence here."

    def test_key_sentences_prefers_flagged(self):
        text = (
            "The meeting started late today. We talked about lunch options. "
            "The important decision was to ship on Friday. Everyone left at five."
        )
        summary = extract_key_sentences(text, max_sentences=2)
        assert summary.startswith("The meeting started late today")
        assert "important decision" in summary
