"""User preferences and a coarse personality model.

Preferences are keyed by (user, category, preference) and the last write
wins. Traits live in [0, 1] and only ever move by small bounded nudges.
"""

import logging
import re
from typing import Dict, List, Optional

from anamnesis import config
from anamnesis.errors import ValidationError
from anamnesis.storage.sqlite import SQLiteStorage
from anamnesis.text import analyze_sentiment, extract_entities, extract_preferences
from anamnesis.types import PersonalityProfile, UserPreference, clamp01, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TRAITS = {
    "formality": 0.5,
    "detail_oriented": 0.5,
    "technical_aptitude": 0.5,
    "patience": 0.5,
    "creativity": 0.5,
}

FORMAL_MARKERS = ("please", "thank you", "kindly", "appreciate")
CASUAL_MARKERS = ("hey", "cool", "awesome", "yeah")
TECHNICAL_TERMS = (
    "api", "database", "algorithm", "function", "server", "deploy", "python",
    "javascript", "sql", "docker", "kubernetes", "framework", "compile", "debug",
)

# Explicit feedback signals accepted by adapt_to_user
FEEDBACK_TRAITS = {
    "too_formal": ("formality", -1),
    "too_casual": ("formality", 1),
    "too_long": ("detail_oriented", -1),
    "too_short": ("detail_oriented", 1),
    "too_technical": ("technical_aptitude", -1),
    "too_simple": ("technical_aptitude", 1),
}


def nudge(value: float, delta: float) -> float:
    """Move ``value`` by ``delta`` with |delta| bounded to the nudge range, clamped to [0, 1]."""
    if delta == 0:
        return clamp01(value)
    magnitude = min(config.TRAIT_NUDGE_MAX, max(config.TRAIT_NUDGE_MIN, abs(delta)))
    return clamp01(value + (magnitude if delta > 0 else -magnitude))


def interaction_nudges(content: str, sentiment: Optional[float] = None) -> Dict[str, float]:
    """Trait deltas suggested by one user message."""
    lowered = content.lower()
    sentiment = analyze_sentiment(content) if sentiment is None else sentiment
    deltas: Dict[str, float] = {}
    if len(content) > 300:
        deltas["detail_oriented"] = 0.1
    if "?" in content:
        deltas["curiosity"] = 0.05
    if sentiment < -0.3:
        deltas["patience"] = -0.05
    elif sentiment > 0.3:
        deltas["patience"] = 0.02

    formal = sum(1 for marker in FORMAL_MARKERS if marker in lowered)
    casual = sum(1 for marker in CASUAL_MARKERS if marker in lowered)
    if formal > casual:
        deltas["formality"] = 0.05
    elif casual > formal:
        deltas["formality"] = -0.05
    return deltas


def interaction_preferences(content: str, sentiment: Optional[float] = None) -> List[Dict[str, object]]:
    """Implicit preferences as {category, preference, strength} dicts."""
    lowered = content.lower()
    sentiment = analyze_sentiment(content) if sentiment is None else sentiment
    found: List[Dict[str, object]] = []
    if "please" in lowered or "thank you" in lowered:
        found.append({"category": "communication_style", "preference": "polite", "strength": 0.7})
    if len(content) > 200:
        found.append({"category": "detail_level", "preference": "detailed", "strength": 0.6})
    elif len(content) < 50:
        found.append({"category": "detail_level", "preference": "concise", "strength": 0.6})
    if sentiment > 0:
        for entity in extract_entities(content):
            if entity.confidence > 0.7:
                found.append({"category": "topics", "preference": entity.name, "strength": entity.confidence})
    technical = [t for t in TECHNICAL_TERMS if re.search(rf"\b{t}\b", lowered)]
    if technical:
        found.append(
            {"category": "technical_level", "preference": "high", "strength": min(0.9, len(technical) * 0.2)}
        )
    found.extend(extract_preferences(content))
    return found


class UserProfileService:
    """Preferences and personality per user."""

    def __init__(self, storage: SQLiteStorage):
        self.storage = storage

    # === Preferences ===

    def learn_preference(
        self,
        user_id: str,
        category: str,
        preference: str,
        strength: float = 0.5,
        context: Optional[str] = None,
    ) -> UserPreference:
        if not user_id:
            raise ValidationError("user_id is required")
        if not category or not preference:
            raise ValidationError("category and preference are required")
        return self.storage.upsert_preference(
            UserPreference(
                user_id=user_id,
                category=category.strip().lower(),
                preference=preference.strip(),
                strength=strength,
                context=context,
            )
        )

    def get_preferences(self, user_id: str, category: Optional[str] = None) -> List[UserPreference]:
        return self.storage.get_preferences(user_id, category.lower() if category else None)

    # === Personality ===

    def get_personality(self, user_id: str) -> PersonalityProfile:
        profile = self.storage.get_profile(user_id)
        if profile is None:
            profile = PersonalityProfile(user_id=user_id, traits=dict(DEFAULT_TRAITS))
        return profile

    def update_user_model(self, user_id: str, content: str) -> PersonalityProfile:
        """Fold one user message into the profile and preferences."""
        if not content or not content.strip():
            raise ValidationError("content cannot be empty")
        sentiment = analyze_sentiment(content)
        profile = self.get_personality(user_id)
        for trait, delta in interaction_nudges(content, sentiment).items():
            profile.traits[trait] = nudge(profile.traits.get(trait, 0.5), delta)

        for pref in interaction_preferences(content, sentiment):
            self.learn_preference(user_id, str(pref["category"]), str(pref["preference"]), float(pref["strength"]))
            if pref["category"] == "topics" and pref["preference"] not in profile.interests:
                profile.interests.append(str(pref["preference"]))

        profile.updated_at = utc_now()
        self.storage.save_profile(profile)
        return profile

    def adapt_to_user(self, user_id: str, interaction: Dict[str, object]) -> Dict[str, object]:
        """Apply an interaction (``content`` and/or ``feedback``) and return response guidance.

        ``feedback`` may be one of the keys of FEEDBACK_TRAITS or a list of them.
        """
        content = str(interaction.get("content") or "")
        if content.strip():
            profile = self.update_user_model(user_id, content)
        else:
            profile = self.get_personality(user_id)

        feedback = interaction.get("feedback") or []
        if isinstance(feedback, str):
            feedback = [feedback]
        applied = []
        for signal in feedback:
            if signal not in FEEDBACK_TRAITS:
                raise ValidationError(f"unknown feedback signal: {signal}")
            trait, direction = FEEDBACK_TRAITS[signal]
            profile.traits[trait] = nudge(profile.traits.get(trait, 0.5), direction * config.TRAIT_NUDGE_MAX)
            applied.append(signal)
        if applied:
            profile.updated_at = utc_now()
            self.storage.save_profile(profile)
            logger.debug(f"Applied feedback {applied} for {user_id}")

        return {
            "traits": dict(profile.traits),
            "suggestions": self.suggestions(user_id, profile),
            "feedback_applied": applied,
        }

    def suggestions(self, user_id: str, profile: Optional[PersonalityProfile] = None) -> List[str]:
        profile = profile or self.get_personality(user_id)
        traits = profile.traits
        out = []
        formality = traits.get("formality", 0.5)
        if formality > 0.7:
            out.append("Use formal language and professional tone")
        elif formality < 0.3:
            out.append("Use casual, friendly language")
        detail = traits.get("detail_oriented", 0.5)
        if detail > 0.7:
            out.append("Provide comprehensive, detailed explanations")
        elif detail < 0.3:
            out.append("Keep responses concise and to the point")

        technical = self.get_preferences(user_id, "technical_level")
        if technical:
            average = sum(p.strength for p in technical) / len(technical)
            if average > 0.7:
                out.append("Use technical terminology and detailed explanations")
            elif average < 0.3:
                out.append("Avoid jargon and explain concepts simply")

        topics = self.get_preferences(user_id, "topics")
        if topics:
            out.append(f"User is particularly interested in: {', '.join(p.preference for p in topics[:5])}")
        return out

    def get_user_insights(self, user_id: str) -> Dict[str, object]:
        """Dominant traits, top preferences and expertise, in plain phrases."""
        profile = self.get_personality(user_id)
        traits = profile.traits
        insights = []
        if traits.get("formality", 0.5) > 0.7:
            insights.append("User prefers formal, professional communication")
        elif traits.get("formality", 0.5) < 0.3:
            insights.append("User prefers casual, relaxed communication")
        if traits.get("detail_oriented", 0.5) > 0.7:
            insights.append("User appreciates detailed, thorough responses")
        if traits.get("patience", 0.5) < 0.3:
            insights.append("User may prefer quick, direct answers")
        if traits.get("curiosity", 0.0) > 0.6:
            insights.append("User is curious and asks many questions")

        preferences = self.get_preferences(user_id)
        top = [f"{p.category}: {p.preference}" for p in preferences[:5]]
        if top:
            insights.append(f"Top preferences: {', '.join(top)}")
        expertise = sorted(profile.expertise.items(), key=lambda kv: kv[1], reverse=True)
        if expertise:
            insights.append(f"Expertise: {', '.join(name for name, _ in expertise[:3])}")

        dominant = sorted(traits.items(), key=lambda kv: abs(kv[1] - 0.5), reverse=True)[:3]
        return {
            "insights": insights,
            "dominant_traits": {name: round(value, 4) for name, value in dominant},
            "top_preferences": top,
            "interests": list(profile.interests),
        }
