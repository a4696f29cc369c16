"""
Signal extraction from the raw question using regex patterns.

Rationale:
- Fast and deterministic - no LLM call needed.
- Detects numbers, measurement units, comparison and protocol language, and a coarse topic.
- The result only drives chart synthesis (charts.py); it is recomputed per request and never stored.
"""

import math
import re
import logging
from dataclasses import dataclass, field
from typing import List, Tuple

logger = logging.getLogger(__name__)

TOPICS = ("farines", "fours", "economie", "concurrence", "organisation", "general")

# Optional sign, digits, optional decimal part with comma or dot.
# Digits preceded by a letter (W260, T65) are identifiers; a trailing unit (250g, 48h) is fine.
NUMBER_PATTERN = re.compile(r"(?<![\w.,])[-+]?\d+(?:[.,]\d+)?")

UNIT_PATTERNS = [
    r"%",  # percentage
    r"°\s*c?|\b\d+\s*degr[ée]s?\b",  # temperature
    r"\b\d+(?:[.,]\d+)?\s*(?:h|heures?|min|minutes?|sec|secondes?|jours?)\b",  # time
    r"€|\$|\beur(?:os?)?\b",  # currency
    r"\b\d+(?:[.,]\d+)?\s*(?:g|kg|grammes?|kilos?)\b",  # mass
]

# Literal flour-strength tokens that count as "variables" even without a unit
VARIABLE_TOKENS = ("w260", "w320")

COMPARISON_PATTERNS = [
    r"\bvs\b|\bversus\b",
    r"compar|diff[ée]rence",
    r"\bmieux\b|plut[ôo]t que|choisir entre|\bou bien\b",
]

PROTOCOL_PATTERNS = [
    r"protocole|proc[ée]dure|[ée]tapes?\b",
    r"fermentation|maturation|pointage|appr[êe]t",
    r"frigo|\bfroid\b|chambre froide",
    r"\b\d+\s*h\b|timeline|planning|plan de production",
]

# Evaluated in order; the first group with a match wins
TOPIC_PATTERNS: List[Tuple[str, str]] = [
    ("farines", r"farines?|\bw\s?\d{3}\b|\bforce\b|gluten|\bbl[ée]s?\b|semoule|levain|hydratation"),
    ("fours", r"\bfours?\b|\bsole\b|vo[ûu]te|cuisson|enfourn|[ée]lectrique|\bbois\b"),
    ("economie", r"\bprix\b|marges?|co[ûu]ts?\b|rentab|€|b[ée]n[ée]fice|food cost"),
    ("concurrence", r"concurren|march[ée]|positionnement|pizzerias? voisines?"),
    ("organisation", r"organisation|planning|\bservice\b|[ée]quipe|production|mise en place|personnel"),
]


@dataclass
class Signals:
    numbers: List[float] = field(default_factory=list)
    # Literal text of each number, aligned with `numbers`
    number_texts: List[str] = field(default_factory=list)
    has_units: bool = False
    has_variables: bool = False
    is_comparison: bool = False
    is_protocol: bool = False
    topic: str = "general"


def _parse_numbers(text: str) -> Tuple[List[float], List[str]]:
    numbers: List[float] = []
    texts: List[str] = []
    for match in NUMBER_PATTERN.finditer(text):
        literal = match.group(0)
        try:
            value = float(literal.replace(",", "."))
        except ValueError:
            continue
        if not math.isfinite(value):
            continue
        numbers.append(value)
        texts.append(literal)
    return numbers, texts


def _any_match(patterns: List[str], text: str) -> bool:
    return any(re.search(pattern, text) for pattern in patterns)


def classify_topic(text: str) -> str:
    """Return the first topic whose keyword group matches, else 'general'."""
    text_lower = (text or "").lower()
    for topic, pattern in TOPIC_PATTERNS:
        if re.search(pattern, text_lower):
            return topic
    return "general"


def extract(text: str) -> Signals:
    """
    Extract chart-driving signals from a user message.

    Never raises: any input (including None) yields a Signals value.
    """
    text_lower = (text or "").lower()

    numbers, number_texts = _parse_numbers(text_lower)
    has_units = _any_match(UNIT_PATTERNS, text_lower)
    has_variables = bool(numbers) and (
        has_units or any(token in text_lower for token in VARIABLE_TOKENS)
    )

    signals = Signals(
        numbers=numbers,
        number_texts=number_texts,
        has_units=has_units,
        has_variables=has_variables,
        is_comparison=_any_match(COMPARISON_PATTERNS, text_lower),
        is_protocol=_any_match(PROTOCOL_PATTERNS, text_lower),
        topic=classify_topic(text_lower),
    )
    logger.debug(f"Signals extracted: {signals}")
    return signals
