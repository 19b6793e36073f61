"""Post-processing for provider output."""

from typing import FrozenSet

# Phrases Whisper-style recognizers emit on near-silent or noisy audio.
HALLUCINATION_PHRASES: FrozenSet[str] = frozenset(
    {
        "thank you",
        "thank you very much",
        "thanks",
        "thanks for watching",
        "thank you for watching",
        "thanks for listening",
        "thank you for listening",
        "please subscribe",
        "subscribe",
        "like and subscribe",
        "bye",
        "bye bye",
        "goodbye",
        "the end",
        "you",
    }
)


def is_hallucination(text: str) -> bool:
    normalized = text.strip().lower()
    if normalized.endswith("."):
        normalized = normalized[:-1].rstrip()
    return normalized in HALLUCINATION_PHRASES


def clean_transcript(text: str) -> str:
    """Trim provider output and collapse known filler phrases to ``""``."""
    if not text:
        return ""
    trimmed = text.strip()
    if not trimmed or is_hallucination(trimmed):
        return ""
    return trimmed


__all__ = ["HALLUCINATION_PHRASES", "clean_transcript", "is_hallucination"]
