"""
Scheme and destination name matching.

User-supplied names are loose ("iphone-15-pro", "unit-tests"); the IDE only
accepts exact names. Resolution tries a canonicalized form, then the literal
input, against names enumerated live from the IDE. On a miss the caller gets
a ``NotFoundError`` with the candidates and a single best guess. A guess is
never used in place of the requested name.
"""

from typing import Any, Callable, List, Optional, Sequence

from .exceptions import NotFoundError
from .logger_config import get_logger

_DESTINATION_MAPPINGS = {
    "iphone": "iPhone",
    "iphone-15": "iPhone 15",
    "iphone-15-pro": "iPhone 15 Pro",
    "iphone-15-pro-max": "iPhone 15 Pro Max",
    "iphone-16": "iPhone 16",
    "iphone-16-pro": "iPhone 16 Pro",
    "iphone-16-pro-max": "iPhone 16 Pro Max",
    "iphone-14": "iPhone 14",
    "iphone-14-pro": "iPhone 14 Pro",
    "iphone-14-pro-max": "iPhone 14 Pro Max",
    "iphone-13": "iPhone 13",
    "iphone-13-pro": "iPhone 13 Pro",
    "iphone-13-pro-max": "iPhone 13 Pro Max",
    "ipad": "iPad",
    "ipad-air": "iPad Air",
    "ipad-pro": "iPad Pro",
    "ipad-mini": "iPad mini",
    "simulator": "Simulator",
    "sim": "Simulator",
    "mac": "Mac",
    "my-mac": "My Mac",
    "mymac": "My Mac",
}

_SCHEME_MAPPINGS = {
    "test": "Tests",
    "tests": "Tests",
    "unit-test": "UnitTests",
    "unit-tests": "UnitTests",
    "unittests": "UnitTests",
    "integration-test": "IntegrationTests",
    "integration-tests": "IntegrationTests",
    "integrationtests": "IntegrationTests",
    "debug": "Debug",
    "release": "Release",
    "prod": "Release",
    "production": "Release",
    "dev": "Debug",
    "development": "Debug",
}

_DEVICE_WORDS = {
    "iphone": "iPhone",
    "ipad": "iPad",
    "mac": "Mac",
    "pro": "Pro",
    "max": "Max",
    "mini": "mini",
    "air": "Air",
    "simulator": "Simulator",
}


def _collapse(name: str) -> str:
    return " ".join(name.replace("-", " ").replace("_", " ").split())


def _capitalize_device_name(name: str) -> str:
    words = []
    for word in name.split(" "):
        lower = word.lower()
        if lower in _DEVICE_WORDS:
            words.append(_DEVICE_WORDS[lower])
        elif word.isdigit():
            words.append(word)
        else:
            words.append(word[:1].upper() + word[1:].lower())
    return " ".join(words)


def normalize_destination_name(destination: str) -> str:
    if not destination:
        return destination
    normalized = destination.strip()
    lower = normalized.lower()
    if lower in _DESTINATION_MAPPINGS:
        return _DESTINATION_MAPPINGS[lower]
    if "simulator" in lower:
        return " ".join(normalized.split())
    if "-" in lower or "_" in lower:
        return _capitalize_device_name(_collapse(normalized))
    return normalized


def normalize_scheme_name(scheme_name: str) -> str:
    if not scheme_name:
        return scheme_name
    normalized = scheme_name.strip()
    lower = normalized.lower()
    if lower in _SCHEME_MAPPINGS:
        return _SCHEME_MAPPINGS[lower]
    # Scheme names are project-specific; keep the user's casing
    if "-" in normalized or "_" in normalized:
        return _collapse(normalized)
    return normalized


def levenshtein_distance(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Edit-distance similarity in [0, 1], case-insensitive. Two empty strings are identical."""
    a, b = a.lower(), b.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - levenshtein_distance(a, b)) / longest


def suggest(requested: str, candidates: Sequence[str]) -> Optional[str]:
    """Return the candidate most similar to ``requested``; earlier candidates win ties."""
    best: Optional[str] = None
    best_score = -1.0
    for candidate in candidates:
        score = similarity(requested.strip(), candidate)
        if score > best_score:
            best, best_score = candidate, score
    return best


class NameResolver:
    """Resolves a requested name against a live list of candidates."""

    def __init__(self, logger: Any = None):
        self.logger = logger or get_logger(__name__)

    def resolve(
        self,
        requested: str,
        candidates: Sequence[str],
        normalize: Callable[[str], str],
        kind: str = "name",
    ) -> str:
        """Return the exact candidate matching ``requested``.

        Raises:
            NotFoundError: neither the normalized nor the literal form is a candidate.
        """
        available: List[str] = list(candidates)
        normalized = normalize(requested)
        if normalized in available:
            if normalized != requested:
                self.logger.debug(f"Resolved {kind} '{requested}' to '{normalized}'")
            return normalized
        if requested in available:
            return requested

        guess = suggest(requested, available)
        self.logger.info(f"{kind.capitalize()} '{requested}' not found among {len(available)} candidates (suggestion: {guess})")
        raise NotFoundError(
            f"{kind.capitalize()} '{requested}' not found",
            requested=requested,
            candidates=available,
            suggestion=guess,
        )

    def resolve_scheme(self, requested: str, candidates: Sequence[str]) -> str:
        return self.resolve(requested, candidates, normalize_scheme_name, kind="scheme")

    def resolve_destination(self, requested: str, candidates: Sequence[str]) -> str:
        return self.resolve(requested, candidates, normalize_destination_name, kind="destination")
