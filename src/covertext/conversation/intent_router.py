"""Intent Router — DETERMINISTIC only, no LLM calls.

Regex/keyword scoring of a policyholder's free-text reply into one of the
menu intents. Pure functions, safe to call from anywhere.
"""

import re

from covertext.domain.enums import Intent

from .contracts import IntentResult

CONFIDENCE_THRESHOLD = 0.8
STRONG_SCORE = 1.0
WEAK_SCORE = 0.85
HELP_SCORE = 0.9

# Exact-match command words (after normalization)
COMMANDS = {
    "menu": Intent.MENU,
    "cancel": Intent.MENU,
    "restart": Intent.MENU,
    "help": Intent.HELP_OR_OTHER,
    "card": Intent.INSURANCE_CARD,
    "expiring": Intent.POLICY_EXPIRATION,
}

# First match scores 1.0 and stops scoring for that intent
STRONG_PATTERNS = {
    Intent.INSURANCE_CARD: [
        re.compile(r"insurance\s+card", re.IGNORECASE),
        re.compile(r"id\s+card", re.IGNORECASE),
        re.compile(r"proof\s+of\s+insurance", re.IGNORECASE),
    ],
    Intent.POLICY_EXPIRATION: [
        re.compile(r"policy\s+expir", re.IGNORECASE),
        re.compile(r"policy\s+expiration", re.IGNORECASE),
        re.compile(r"renewal\s+date", re.IGNORECASE),
    ],
}

# Every pattern is checked; the last one that matches sets the score
WEAK_PATTERNS = {
    Intent.INSURANCE_CARD: [
        re.compile(r"\b(my|the|our)\s+(insurance\s+)?card\b", re.IGNORECASE),
        re.compile(r"\bcard\b.{0,30}(insurance|auto|vehicle|car|truck)", re.IGNORECASE),
        re.compile(r"(insurance|auto|vehicle|car|truck).{0,30}\bcard\b", re.IGNORECASE),
    ],
    Intent.POLICY_EXPIRATION: [
        re.compile(r"\b(expire|expiration|renew|renewal)\b", re.IGNORECASE),
    ],
}

# Requests the self-service menu can't handle; the agency has to
HELP_KEYWORDS = (
    "agent", "human", "representative", "change", "add", "remove",
    "address", "vehicle", "driver", "billing", "claim",
)

_WHITESPACE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize(text: str | None) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", (text or "").strip().lower())


def _score_patterns(text: str, intent: Intent) -> float:
    for pattern in STRONG_PATTERNS[intent]:
        if pattern.search(text):
            return STRONG_SCORE

    score = 0.0
    for pattern in WEAK_PATTERNS[intent]:
        if pattern.search(text):
            score = WEAK_SCORE
    return score


def _score_help_or_other(text: str) -> float:
    if any(keyword in text for keyword in HELP_KEYWORDS):
        return HELP_SCORE
    return 0.0


def score_intents(text: str) -> dict[Intent, float]:
    """Score every candidate intent for an already-normalized body.

    Dict order is the tie-break order used by route_intent.
    """
    return {
        Intent.INSURANCE_CARD: _score_patterns(text, Intent.INSURANCE_CARD),
        Intent.POLICY_EXPIRATION: _score_patterns(text, Intent.POLICY_EXPIRATION),
        Intent.HELP_OR_OTHER: _score_help_or_other(text),
    }


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def route_intent(
    body: str | None,
    state: str | None = None,
    last_menu_sent_at=None,
    threshold: float = CONFIDENCE_THRESHOLD,
) -> IntentResult:
    """Classify a message body into an IntentResult.

    ``state`` and ``last_menu_sent_at`` are accepted so callers can pass the
    full session snapshot; scoring currently depends on the text alone.
    """
    text = normalize(body)

    if text in COMMANDS:
        return IntentResult(
            intent=COMMANDS[text],
            confidence=1.0,
            reason=f"command_word: {text}",
        )

    scores = score_intents(text)
    best_intent = max(scores, key=scores.get)
    best_score = scores[best_intent]

    if best_score >= threshold:
        return IntentResult(
            intent=best_intent,
            confidence=best_score,
            reason=f"keyword_match: {best_score}",
        )

    return IntentResult(
        intent=Intent.MENU,
        confidence=0.0,
        reason="no_match: showing_menu",
    )
