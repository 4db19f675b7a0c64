"""Text analysis utilities.

Lexicon and regex based: keywords, named entities, sentiment, topics and
the cheap set similarities used by retrieval and consolidation. Every
function here is pure.
"""

import re
from collections import Counter
from typing import Dict, Iterable, List

from anamnesis.types import NamedEntity

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "from", "up", "about", "into", "through", "during", "before",
        "after", "above", "below", "between", "among", "is", "are", "was", "were",
        "be", "been", "being", "have", "has", "had", "do", "does", "did", "will",
        "would", "could", "should", "may", "might", "must", "can", "this", "that",
        "these", "those", "i", "you", "he", "she", "it", "we", "they", "me", "him",
        "her", "us", "them", "not", "very", "just", "than", "then", "there", "what",
        "when", "where", "which", "who", "how", "why", "its", "our", "your", "their",
    }
)

POSITIVE_WORDS = frozenset(
    {
        "good", "great", "excellent", "amazing", "wonderful", "fantastic", "love",
        "like", "happy", "pleased", "thanks", "perfect", "awesome", "helpful", "glad",
    }
)
NEGATIVE_WORDS = frozenset(
    {
        "bad", "terrible", "awful", "horrible", "hate", "dislike", "sad", "angry",
        "disappointed", "upset", "frustrated", "annoying", "broken", "wrong", "useless",
    }
)

EMOTION_KEYWORDS: Dict[str, List[str]] = {
    "happy": ["happy", "joy", "excited", "pleased", "delighted", "cheerful"],
    "sad": ["sad", "depressed", "disappointed", "upset", "down"],
    "angry": ["angry", "mad", "furious", "irritated", "annoyed", "frustrated"],
    "anxious": ["anxious", "worried", "nervous", "stressed", "concerned", "uneasy"],
    "surprised": ["surprised", "shocked", "amazed", "astonished", "stunned"],
    "confused": ["confused", "puzzled", "perplexed", "bewildered"],
}

_PERSON_RE = re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+(?:\s[A-Z][a-z]+)?\b")
_ORG_RE = re.compile(
    r"\b[A-Z][a-zA-Z]+(?: [A-Z][a-zA-Z]+)* "
    r"(?:Inc|Corp|LLC|Ltd|Company|Organization|University|School|Hospital|Bank)\b"
)
_LOCATION_RE = re.compile(
    r"\b[A-Z][a-z]+ (?:City|State|Country|Street|Avenue|Road|Boulevard|Drive|Lane)\b"
)
_DATE_RE = re.compile(
    r"\b(?:\d{1,2}/\d{1,2}/\d{4}|\d{4}-\d{2}-\d{2}|"
    r"(?:January|February|March|April|May|June|July|August|September|October|"
    r"November|December)\s+\d{1,2},?\s+\d{4})\b"
)
_CONCEPT_RE = re.compile(r"\b[A-Z][a-zA-Z]{2,}\b")
_SENTENCE_RE = re.compile(r"[.!?]+")
_QUESTION_WORDS = ("what", "when", "where", "who", "why", "how", "which", "whose")
_FACT_INDICATORS = (
    " is ", " are ", " was ", " were ", " has ", " have ", " had ", "contains",
    "includes", "consists", "located", "founded", "established", "created",
    "measures", "weighs", "costs", "equals",
)
_REQUEST_PATTERNS = [
    re.compile(r"(?:please|can you|could you|would you) (.+?)(?:[.,?!]|$)"),
    re.compile(r"(?:help me|assist me|show me) (.+?)(?:[.,?!]|$)"),
    re.compile(r"(?:^|\s)(?:create|make|build|generate) (.+?)(?:[.,?!]|$)"),
    re.compile(r"(?:^|\s)(?:find|search|look for) (.+?)(?:[.,?!]|$)"),
]
_PREFERENCE_PATTERNS = [
    (re.compile(r"\bi (?:like|love|prefer|enjoy|want) (.+?)(?:[.,!?]|$)"), 0.8),
    (re.compile(r"\bi (?:dislike|hate|don't like|avoid) (.+?)(?:[.,!?]|$)"), 0.2),
    (re.compile(r"\bmy favorite (?:.+?) is (.+?)(?:[.,!?]|$)"), 0.9),
    (re.compile(r"\bi usually (.+?)(?:[.,!?]|$)"), 0.6),
    (re.compile(r"\bi always (.+?)(?:[.,!?]|$)"), 0.9),
    (re.compile(r"\bi never (.+?)(?:[.,!?]|$)"), 0.1),
]
_PREFERENCE_CATEGORIES = {
    "food": ["eat", "food", "meal", "restaurant", "cuisine", "dish"],
    "music": ["music", "song", "artist", "band", "album", "genre"],
    "technology": ["software", "app", "tool", "platform", "device", "tech", "mode", "editor"],
    "work": ["work", "job", "career", "project", "task", "meeting"],
    "entertainment": ["movie", "show", "game", "book", "video", "series"],
    "lifestyle": ["exercise", "hobby", "activity", "sport", "travel"],
}


def tokenize(text: str) -> List[str]:
    """Lowercase word tokens with punctuation stripped."""
    tokens = []
    for raw in text.split():
        token = re.sub(r"[^\w]", "", raw.lower())
        if token:
            tokens.append(token)
    return tokens


def stem(word: str) -> str:
    """Very small suffix stripper; enough to fold 'prefers'/'preferred'."""
    word = word.lower()
    if word.endswith("ing") and len(word) > 6:
        return word[:-3]
    if word.endswith("tion") and len(word) > 7:
        return word[:-4]
    if word.endswith("ed") and len(word) > 5:
        return word[:-2]
    if word.endswith("er") and len(word) > 5:
        return word[:-2]
    if word.endswith("ly") and len(word) > 5:
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss") and len(word) > 4:
        return word[:-1]
    return word


def extract_keywords(text: str, max_keywords: int = 10) -> List[str]:
    """Most frequent stemmed content words, ties kept in first-seen order."""
    counts: Counter = Counter()
    for token in tokenize(text):
        if len(token) <= 2 or token in STOP_WORDS or not token.isalpha():
            continue
        counts[stem(token)] += 1
    return [word for word, _ in counts.most_common(max_keywords)]


def extract_entities(text: str) -> List[NamedEntity]:
    """Regex named-entity extraction, deduplicated by surface form."""
    found: Dict[str, NamedEntity] = {}

    def add(name: str, etype: str, confidence: float) -> None:
        name = name.strip()
        if name in found:
            found[name].mentions += 1
            return
        found[name] = NamedEntity(name=name, type=etype, confidence=confidence)

    people = _PERSON_RE.findall(text)
    orgs = _ORG_RE.findall(text)
    for match in people:
        add(match, "person", 0.8)
    for match in orgs:
        add(match, "organization", 0.7)
    for match in _LOCATION_RE.findall(text):
        add(match, "location", 0.7)
    for match in _DATE_RE.findall(text):
        add(match, "date", 0.9)

    covered = " ".join(people + orgs)
    for match in _CONCEPT_RE.findall(text):
        if match in covered or match.lower() in STOP_WORDS:
            continue
        add(match, "concept", 0.5)
    return list(found.values())


def analyze_sentiment(text: str) -> float:
    """Lexicon sentiment in [-1, 1].

    Normalised by the number of opinion-bearing tokens rather than all
    tokens so that a single "hate" in a long sentence still registers.
    """
    tokens = tokenize(text)
    if not tokens:
        return 0.0
    positive = sum(1 for t in tokens if t in POSITIVE_WORDS)
    negative = sum(1 for t in tokens if t in NEGATIVE_WORDS)
    hits = positive + negative
    if hits == 0:
        return 0.0
    score = (positive - negative) / hits
    # Damp by opinion density so a lone word is not a full +-1
    density = min(1.0, hits / max(1.0, len(tokens) / 4.0))
    return max(-1.0, min(1.0, score * (0.5 + 0.5 * density)))


def extract_emotions(text: str) -> List[str]:
    lowered = text.lower()
    return [
        emotion
        for emotion, words in EMOTION_KEYWORDS.items()
        if any(re.search(rf"\b{w}\b", lowered) for w in words)
    ]


def extract_topics(text: str, max_topics: int = 5) -> List[str]:
    """Entity types present, then top keywords."""
    entity_types: List[str] = []
    for entity in extract_entities(text):
        if entity.type != "concept" and entity.type not in entity_types:
            entity_types.append(entity.type)
    keywords = [k for k in extract_keywords(text, 20) if k not in entity_types]
    return (entity_types + keywords)[:max_topics]


def split_sentences(text: str, min_length: int = 10) -> List[str]:
    return [s.strip() for s in _SENTENCE_RE.split(text) if len(s.strip()) > min_length]


def extract_facts(text: str) -> List[str]:
    facts = []
    for sentence in split_sentences(text):
        padded = f" {sentence.lower()} "
        if "?" in sentence or padded.strip().startswith(_QUESTION_WORDS):
            continue
        if any(ind in padded for ind in _FACT_INDICATORS):
            facts.append(sentence)
    return facts


def extract_questions(text: str) -> List[str]:
    questions = []
    for part in re.split(r"(?<=[.!?])\s+", text.strip()):
        part = part.strip()
        if not part:
            continue
        if part.endswith("?") or part.lower().startswith(_QUESTION_WORDS):
            questions.append(part.rstrip("?").strip())
    return [q for q in questions if q]


def extract_requests(text: str) -> List[str]:
    lowered = text.lower()
    requests: List[str] = []
    for pattern in _REQUEST_PATTERNS:
        for match in pattern.finditer(lowered):
            request = match.group(1).strip()
            if len(request) > 3 and request not in requests:
                requests.append(request)
    return requests


def categorize_preference(preference: str) -> str:
    lowered = preference.lower()
    for category, words in _PREFERENCE_CATEGORIES.items():
        if any(word in lowered for word in words):
            return category
    return "general"


def extract_preferences(text: str) -> List[Dict[str, object]]:
    """First-person preference statements as {category, preference, strength}."""
    lowered = text.lower()
    preferences = []
    for pattern, strength in _PREFERENCE_PATTERNS:
        for match in pattern.finditer(lowered):
            value = match.group(1).strip()
            if len(value) > 3:
                preferences.append(
                    {
                        "category": categorize_preference(value),
                        "preference": value,
                        "strength": strength,
                    }
                )
    return preferences


def analyze_text(text: str) -> Dict[str, List[str]]:
    """Everything a conversation message is mined for, as plain lists."""
    return {
        "facts": extract_facts(text),
        "questions": extract_questions(text),
        "requests": extract_requests(text),
        "emotions": extract_emotions(text),
        "entities": [e.name for e in extract_entities(text)],
        "preferences": [p["preference"] for p in extract_preferences(text)],
    }


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def text_similarity(a: str, b: str) -> float:
    """Token-set Jaccard similarity of two texts."""
    return jaccard(tokenize(a), tokenize(b))


def overlap_ratio(a: Iterable[str], b: Iterable[str]) -> float:
    """Shared items over the larger set size."""
    set_a, set_b = set(a), set(b)
    denom = max(len(set_a), len(set_b))
    if denom == 0:
        return 0.0
    return len(set_a & set_b) / denom


def extract_key_sentences(content: str, max_sentences: int = 2) -> str:
    """Short extractive summary: first sentence, flagged sentences, then the last."""
    sentences = split_sentences(content)
    if len(sentences) <= max_sentences:
        return content.strip()

    markers = ("important", "key", "critical", "remember", "note")
    picked = [sentences[0]]
    for sentence in sentences[1:-1]:
        if len(picked) >= max_sentences:
            break
        if any(m in sentence.lower() for m in markers):
            picked.append(sentence)
    if len(picked) < max_sentences:
        picked.append(sentences[-1])
    return ". ".join(picked) + "."
