"""Keyword-based language detection."""

import re
from dataclasses import dataclass

_CYRILLIC = re.compile(r"[Ѐ-ӿ]")
# Letters only the Macedonian alphabet uses.
_MACEDONIAN_LETTERS = re.compile(r"[ѓќѕЃЌЅ]")
_MACEDONIAN_WORDS = re.compile(
    r"\b(уверение|универзитет|информатика|контролен|испит|диплома)\b", re.IGNORECASE
)
_FRENCH_WORDS = re.compile(
    r"\b(le|la|les|de|du|des|et|est|une|un|avec|pour|dans|sur|attestation|"
    r"certificat|université|formation)\b",
    re.IGNORECASE,
)
_GERMAN_WORDS = re.compile(
    r"\b(der|die|das|und|ist|mit|für|von|auf|zu|im|am|ein|eine|einen|einem|eines)\b",
    re.IGNORECASE,
)
_SPANISH_WORDS = re.compile(
    r"\b(el|la|los|las|de|del|y|es|en|con|para|por|un|una|que|se|no|te|lo|le)\b",
    re.IGNORECASE,
)
# Tie order: French, German, Spanish.
_LATIN_WORDS = (("fr", _FRENCH_WORDS), ("de", _GERMAN_WORDS), ("es", _SPANISH_WORDS))


@dataclass(frozen=True)
class LanguageGuess:
    """Detected language code with a heuristic confidence."""

    language: str
    confidence: float
    alternatives: tuple[tuple[str, float], ...] = ()


def detect_language(text: str) -> LanguageGuess:
    """Guess the primary language of ``text``.

    Cyrillic text is Macedonian when it contains Macedonian-only letters
    or characteristic words, Serbian otherwise. Latin text goes to the
    language with the most function-word hits among French, German and
    Spanish (ties in that order), and falls back to English.

    Args:
        text: Document text.

    Returns:
        The language guess; ``unknown`` with zero confidence for blank text.
    """
    if not text.strip():
        return LanguageGuess("unknown", 0.0)

    if _CYRILLIC.search(text):
        if _MACEDONIAN_LETTERS.search(text) or _MACEDONIAN_WORDS.search(text):
            return LanguageGuess("mk", 0.85, (("sr", 0.1), ("bg", 0.05)))
        return LanguageGuess("sr", 0.7, (("mk", 0.2), ("bg", 0.1)))

    hits = {code: len(pattern.findall(text)) for code, pattern in _LATIN_WORDS}
    best = max(hits, key=hits.__getitem__)
    if hits[best]:
        return LanguageGuess(best, 0.8, (("en", 0.2),))

    return LanguageGuess("en", 0.6, (("fr", 0.2), ("de", 0.1), ("es", 0.1)))
