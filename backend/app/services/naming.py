"""Campaign name uniqueness resolver.

User-facing names never get numeric suffixes. When a desired name is taken the
resolver derives descriptive alternatives from the prompt that originated the
campaign and returns the first one that is still free.
"""

import logging
import re

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255
MAX_KEYWORDS = 3

_WORD_RE = re.compile(r"[A-Za-z][A-Za-z'&-]*")

STOPWORDS = frozenset({
    "a", "about", "ad", "ads", "an", "and", "any", "are", "as", "at", "be", "but",
    "by", "can", "campaign", "create", "do", "for", "from", "get", "have", "help",
    "i", "in", "into", "is", "it", "its", "make", "me", "more", "my", "need", "new",
    "of", "on", "or", "our", "out", "please", "run", "some", "that", "the", "their",
    "this", "to", "up", "us", "want", "we", "with", "you", "your",
})

# Ordered, so the first free alternative is always the same one
SUFFIXES = ("Campaign", "Promo", "Spotlight", "Launch", "Showcase", "Boost", "Drive", "Push")


def extract_keywords(seed_prompt: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """Title-cased content words from the prompt, first occurrence order."""
    keywords: list[str] = []
    seen: set[str] = set()
    for match in _WORD_RE.finditer(seed_prompt or ""):
        word = match.group(0).strip("'&-")
        lowered = word.lower()
        if len(lowered) < 3 or lowered in STOPWORDS or lowered in seen:
            continue
        seen.add(lowered)
        keywords.append(word[:1].upper() + word[1:].lower())
        if len(keywords) >= limit:
            break
    return keywords


def generate_name_candidates(seed_prompt: str | None) -> list[str]:
    """Derive an ordered list of descriptive names from the originating prompt.

    Returns an empty list when the prompt has no usable content words.
    """
    keywords = extract_keywords(seed_prompt or "")
    if not keywords:
        return []

    bases = []
    for size in range(len(keywords), 0, -1):
        base = " ".join(keywords[:size])
        if base not in bases:
            bases.append(base)

    candidates: list[str] = []
    seen: set[str] = set()
    for base in bases:
        for suffix in SUFFIXES:
            name = f"{base} {suffix}"[:MAX_NAME_LENGTH].strip()
            if name.lower() in seen:
                continue
            seen.add(name.lower())
            candidates.append(name)
    return candidates


def pick_unique(candidates: list[str], taken_lower: set[str]) -> str | None:
    for candidate in candidates:
        if candidate.lower() not in taken_lower:
            return candidate
    return None


def resolve(desired: str, taken_lower: set[str], seed_prompt: str | None = None) -> str | None:
    """Return ``desired`` if free, otherwise the first free prompt-derived alternative.

    ``None`` means no alternative could be found and the caller must report a
    conflict. The comparison is case-insensitive.
    """
    taken = {name.lower() for name in taken_lower}
    if desired.lower() not in taken:
        return desired

    taken.add(desired.lower())
    alternative = pick_unique(generate_name_candidates(seed_prompt), taken)
    if alternative is None:
        logger.info("No unique alternative for %r (seed prompt present: %s)", desired, bool(seed_prompt))
    return alternative
