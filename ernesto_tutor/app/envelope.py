"""
Extraction and repair of the structured envelope embedded in model output.

Flow:
1. Find the first <GRAPH_JSON>...</GRAPH_JSON> block (case-insensitive, non-greedy).
   The narrative text is the output with that block removed.
2. Parse the block as strict JSON.
3. On failure, ask the model once to rebuild a schema-conformant JSON object.
4. If that fails too, fall back to a fixed placeholder envelope.

Nothing raised inside this ladder reaches the caller.
"""

import json
import logging
import os
import re
from typing import Any, Callable, Dict, Optional, Tuple

from .utils import PROMPTS_DIR, read_prompt

logger = logging.getLogger(__name__)

REPAIR_PROMPT_PATH = os.path.join(PROMPTS_DIR, "repair_system.txt")

OPEN_MARKER = "<GRAPH_JSON>"
CLOSE_MARKER = "</GRAPH_JSON>"
BLOCK_PATTERN = re.compile(
    re.escape(OPEN_MARKER) + r"([\s\S]*?)" + re.escape(CLOSE_MARKER),
    re.IGNORECASE,
)

EMPTY_CANDIDATE = "(vide)"
FALLBACK_CONFIDENCE = 0.2


def extract_envelope_block(raw_output: str) -> Tuple[str, Optional[str]]:
    """
    Split model output into (narrative_text, candidate_json).

    candidate_json is None when no complete marker pair is present.
    """
    raw_output = raw_output or ""
    match = BLOCK_PATTERN.search(raw_output)
    if not match:
        return raw_output.strip(), None
    narrative = (raw_output[:match.start()] + raw_output[match.end():]).strip()
    return narrative, match.group(1).strip()


def _reject_constant(token: str):
    raise ValueError(f"Non-standard JSON constant {token}")


def parse_envelope(candidate: Optional[str]) -> Optional[Dict[str, Any]]:
    """Strict JSON parse; only a JSON object counts as an envelope."""
    if candidate is None:
        return None
    try:
        parsed = json.loads(candidate, parse_constant=_reject_constant)
    except (ValueError, TypeError) as e:
        logger.warning(f"Envelope is not valid JSON: {e}")
        return None
    if not isinstance(parsed, dict):
        logger.warning(f"Envelope JSON is a {type(parsed).__name__}, expected an object")
        return None
    return parsed


def fallback_envelope() -> Dict[str, Any]:
    return {
        "title": "Synthèse",
        "summary": "",
        "confidence": FALLBACK_CONFIDENCE,
        "charts": [],
        "checklist": [],
        "recap_table": {
            "columns": ["Élément", "Détail"],
            "rows": [],
            "note": "La synthèse structurée n'a pas pu être générée pour cette réponse ; la réponse écrite reste valable.",
        },
        "questions": [],
    }


def build_repair_prompt(mode: str, question: str, candidate: Optional[str]) -> str:
    return (
        f"Question d'origine :\n{question}\n\n"
        f"Mode : {mode}\n\n"
        f"Bloc JSON invalide ou absent :\n{candidate if candidate else EMPTY_CANDIDATE}\n\n"
        "Renvoie UNIQUEMENT l'objet JSON conforme au schéma, sans texte autour."
    )


def repair(
    raw_output: str,
    mode: str,
    question: str,
    complete: Callable[..., str],
    candidate: Optional[str] = None,
) -> Tuple[str, Dict[str, Any]]:
    """
    Return (narrative_text, envelope) for a raw model answer.

    `complete(system_prompt, user_prompt, json_only=True)` is called at most once,
    only when the embedded block is missing or unparsable. An explicit `candidate`
    replaces the block found in `raw_output`.
    """
    narrative, extracted = extract_envelope_block(raw_output)
    if candidate is None:
        candidate = extracted

    envelope = parse_envelope(candidate)
    if envelope is not None:
        return narrative, envelope

    logger.warning(
        "Envelope block %s; requesting one repair completion",
        "missing" if candidate is None else "unparsable",
    )
    try:
        system_prompt = read_prompt(REPAIR_PROMPT_PATH)
        repaired = complete(system_prompt, build_repair_prompt(mode, question, candidate), json_only=True)
        logger.debug(f"Repair raw response: {repaired}")
        envelope = parse_envelope((repaired or "").strip())
    except Exception as e:
        logger.error(f"Envelope repair call failed: {type(e).__name__}: {e}")
        envelope = None

    if envelope is None:
        logger.warning("Envelope repair failed; using placeholder envelope")
        envelope = fallback_envelope()
    return narrative, envelope
