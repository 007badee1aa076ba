"""
Veritas Content Classification

The transform engine consumes classification through the
``ClassificationOracle`` contract only. Concrete models (hosted NLP APIs,
transformer pipelines) plug in behind it.

``KeywordClassifier`` is the built-in oracle:
  1. Sentiment from a positive/negative lexicon, normalized to -1..1
  2. Themes from keyword families
  3. Entities from @mentions, #hashtags and capitalized phrases
  4. Toxicity heuristics (caps ratio, punctuation bursts, abusive terms)
  5. Subjectivity as the share of opinion words
  6. Language detection via langdetect
"""
from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from langdetect import DetectorFactory, detect
from langdetect.lang_detect_exception import LangDetectException

from veritas.core.errors import ClassificationError

logger = logging.getLogger(__name__)

# langdetect is probabilistic; a fixed seed keeps results stable across runs
DetectorFactory.seed = 0


@dataclass
class SentimentResult:
    score: float = 0.0          # -1.0 to 1.0
    label: str = "neutral"      # positive | negative | neutral
    confidence: float = 0.5     # 0.0 to 1.0


@dataclass
class EntityMention:
    text: str
    type: str
    confidence: float


@dataclass
class ContentClassification:
    """Oracle output for one text. Ephemeral, never persisted."""
    sentiment: SentimentResult = field(default_factory=SentimentResult)
    topics: List[str] = field(default_factory=list)
    entities: List[EntityMention] = field(default_factory=list)
    toxicity: float = 0.0
    subjectivity: float = 0.0
    language: Optional[str] = None


class ClassificationOracle(ABC):
    """Turns raw text into sentiment, topics and entities."""

    @abstractmethod
    async def classify(self, text: str) -> ContentClassification:
        ...

    async def batch_classify(self, texts: Sequence[str]) -> List[ContentClassification]:
        """Classify many texts; result order matches input order."""
        return list(await asyncio.gather(*(self.classify(t) for t in texts)))


# ── Lexicons ─────────────────────────────────────────────────────────────

POSITIVE_WORDS = {
    "good", "great", "excellent", "like", "love", "happy", "hope", "win",
    "support", "progress", "success", "benefit", "strong", "positive", "best",
}
NEGATIVE_WORDS = {
    "bad", "awful", "terrible", "dislike", "hate", "sad", "fear", "crisis",
    "fail", "failure", "threat", "worst", "angry", "scandal", "negative",
}
ABUSIVE_WORDS = {"idiot", "stupid", "moron", "trash", "disgusting"}

THEME_KEYWORDS: Dict[str, List[str]] = {
    "politics": ["policy", "government", "election", "vote", "political", "senate", "parliament"],
    "technology": ["tech", "digital", "software", "app", "innovation", "ai", "startup"],
    "climate": ["climate", "emissions", "warming", "carbon", "renewable"],
    "environment": ["sustainable", "green", "eco", "environmental", "pollution", "wildlife"],
    "economy": ["economy", "inflation", "market", "jobs", "recession", "prices"],
    "health": ["health", "vaccine", "hospital", "disease", "medical", "pandemic"],
    "security": ["war", "military", "attack", "defense", "conflict"],
}

WORD_PATTERN = re.compile(r"[a-z0-9']+")
MENTION_PATTERN = re.compile(r"@(\w{2,})")
HASHTAG_PATTERN = re.compile(r"#(\w{2,})")
CAPITALIZED_PHRASE = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)\b")


class KeywordClassifier(ClassificationOracle):
    """Lexicon and pattern based oracle. Deterministic, no model downloads."""

    def __init__(self, themes: Optional[Dict[str, List[str]]] = None):
        self.themes = themes or THEME_KEYWORDS

    async def classify(self, text: str) -> ContentClassification:
        if text is None:
            raise ClassificationError("cannot classify empty input")
        return self.classify_sync(text)

    async def batch_classify(self, texts: Sequence[str]) -> List[ContentClassification]:
        return [await self.classify(t) for t in texts]

    def classify_sync(self, text: str) -> ContentClassification:
        clean_text = text.strip()[:5000]
        words = WORD_PATTERN.findall(clean_text.lower())
        return ContentClassification(
            sentiment=self._analyze_sentiment(words),
            topics=self._extract_themes(words),
            entities=self._extract_entities(clean_text),
            toxicity=self._score_toxicity(clean_text, words),
            subjectivity=self._score_subjectivity(words),
            language=self._detect_language(clean_text),
        )

    # ── Sub-Processors ───────────────────────────────────────────────────

    @staticmethod
    def _analyze_sentiment(words: List[str]) -> SentimentResult:
        positive = sum(1 for w in words if w in POSITIVE_WORDS)
        negative = sum(1 for w in words if w in NEGATIVE_WORDS)
        score = 0.0
        if positive + negative > 0:
            score = (positive - negative) / (positive + negative)

        label = "neutral"
        if score > 0.2:
            label = "positive"
        elif score < -0.2:
            label = "negative"

        return SentimentResult(score=score, label=label, confidence=min(0.9, abs(score) + 0.5))

    def _extract_themes(self, words: List[str]) -> List[str]:
        vocabulary = set(words)
        return [theme for theme, keywords in self.themes.items() if vocabulary.intersection(keywords)]

    @staticmethod
    def _extract_entities(text: str) -> List[EntityMention]:
        entities: List[EntityMention] = []
        seen = set()

        def add(name: str, kind: str, confidence: float) -> None:
            key = (name.lower(), kind)
            if key not in seen:
                seen.add(key)
                entities.append(EntityMention(text=name, type=kind, confidence=confidence))

        for match in MENTION_PATTERN.finditer(text):
            add(match.group(1), "mention", 0.9)
        for match in HASHTAG_PATTERN.finditer(text):
            add(match.group(1), "hashtag", 0.8)
        for match in CAPITALIZED_PHRASE.finditer(text):
            add(match.group(1), "named_entity", 0.6)
        return entities

    @staticmethod
    def _score_toxicity(text: str, words: List[str]) -> float:
        score = 0.0
        if len(text) > 10:
            caps_ratio = sum(1 for c in text if c.isupper()) / len(text)
            if caps_ratio > 0.6:
                score += 0.3
        if text.count("!") + text.count("?") > 5:
            score += 0.2
        score += 0.25 * sum(1 for w in words if w in ABUSIVE_WORDS)
        return min(score, 1.0)

    @staticmethod
    def _score_subjectivity(words: List[str]) -> float:
        if not words:
            return 0.0
        opinionated = sum(1 for w in words if w in POSITIVE_WORDS or w in NEGATIVE_WORDS)
        return min(opinionated / len(words) * 5, 1.0)

    @staticmethod
    def _detect_language(text: str) -> Optional[str]:
        try:
            return detect(text[:500])
        except LangDetectException:
            return None
