"""Deterministic reminder wording and the prompt sent to the text generator."""
from __future__ import annotations

from datetime import date
from typing import Optional

from models.schemas import Gender, Relationship, ReminderSource


def ordinal(n: int) -> str:
    if n % 100 in (11, 12, 13):
        return f"{n}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def _age_prefix(age: Optional[int]) -> str:
    return f"{ordinal(age)} " if age else ""


def fallback_message(source: ReminderSource, on: date) -> str:
    """Template keyed by relationship and gender; used when no other text is available."""
    prefix = _age_prefix(source.age_on(on))
    if source.relationship == Relationship.FRIEND:
        term = "brother" if source.gender == Gender.MALE else "sis"
        return f"Happy {prefix}birthday {term}! 🎉🎂"
    return f"Happy {prefix}birthday {source.name}! 🎉🎂"


def build_prompt(source: ReminderSource, on: date) -> str:
    age = source.age_on(on)
    turning = f" who is turning {ordinal(age)}" if age else ""
    return (
        f"Generate a personalized birthday wish for someone named {source.name}{turning}.\n\n"
        f"Details:\n"
        f"- Name: {source.name}\n"
        f"- Age: {ordinal(age) if age else 'unknown'}\n"
        f"- Gender: {source.gender.value}\n"
        f"- Relationship: {source.relationship.value}\n\n"
        "Rules:\n"
        '- If relationship is "friend" and gender is "male", use "brother" in the message\n'
        '- If relationship is "friend" and gender is "female", use "sis" in the message\n'
        '- If relationship is "relative", use their actual name in the message\n'
        '- If relationship is "family", use the relationship term (like "mom", "dad", '
        '"sister") in the message\n\n'
        "Make it warm, personal, and celebratory. Include appropriate emojis. "
        "Keep it under 50 words."
    )
