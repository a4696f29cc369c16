"""
Core orchestration / pipeline.

Flow:
1. Validate the question.
2. Retrieve supporting passages (best effort, similarity floor applied).
3. Assemble system + user prompts (documents, optional UI context, optional photo).
4. Primary LLM call - failures propagate to the caller.
5. Extract / repair the <GRAPH_JSON> envelope (at most one extra LLM call).
6. DETERMINISTICALLY fill missing charts in deep mode (no LLM needed).
7. Return a JSON-safe result dict.
"""

import functools
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from .charts import synthesize
from .config import Settings
from .envelope import repair
from .errors import InvalidInput, TutorError, UpstreamFailure
from .llm_client import InlineImage, call_llm
from .retrieval import format_retrieved_context, retrieve_passages, summarize_matches
from .utils import PROMPTS_DIR, read_prompt, safe_json

logger = logging.getLogger(__name__)

TUTOR_PROMPT_PATH = os.path.join(PROMPTS_DIR, "tutor_system.txt")

NO_CONTEXT_TEXT = "(non fourni)"

MODE_INSTRUCTIONS = {
    "quick": (
        "MODE VITE :\n"
        "Réponse courte et directe (diagnostic 4-6 lignes, checklist 3 actions). "
        "Le bloc <GRAPH_JSON> reste obligatoire ; \"charts\" peut être vide."
    ),
    "deep": (
        "MODE APPROFONDIE :\n"
        "Diagnostic complet avec hypothèses et variables. Si la demande implique des "
        "paramètres, valeurs, comparaisons ou un protocole, produis au moins un graphique "
        "(table/bar/timeline/radar/scatter) dans \"charts\"."
    ),
}

FIRST_TURN_HINT = "PREMIER ÉCHANGE : présente-toi en une phrase avant le diagnostic."
FOLLOW_UP_HINT = "Conversation en cours : ne te présente pas à nouveau."

PHOTO_INSTRUCTION = (
    "PHOTO FOURNIE : analyse-la en priorité pour le diagnostic comme une observation expérimentale "
    "(cornicione, alvéolage, cuisson, coloration, hydratation apparente). "
    "Pas de certitudes : propose hypothèses + tests/ajustements concrets."
)


def build_system_prompt(mode: str) -> str:
    base = read_prompt(TUTOR_PROMPT_PATH).strip()
    return f"{base}\n\n{MODE_INSTRUCTIONS.get(mode, MODE_INSTRUCTIONS['quick'])}"


def build_user_prompt(
    message: str,
    retrieved_context: str,
    context_text: Optional[str] = None,
    is_first_turn: bool = False,
) -> str:
    return (
        f"DOCUMENTS EPPPN / LIVRES (extraits) :\n{retrieved_context}\n\n"
        f"Contexte utilisateur (optionnel) :\n{context_text or NO_CONTEXT_TEXT}\n\n"
        f"{FIRST_TURN_HINT if is_first_turn else FOLLOW_UP_HINT}\n\n"
        f"Question :\n{message}"
    )


def answer_question(
    message: str,
    settings: Settings,
    mode: str = "quick",
    context_text: Optional[str] = None,
    image: Optional[InlineImage] = None,
    is_first_turn: bool = False,
    complete: Optional[Callable[..., str]] = None,
    retrieve: Optional[Callable[[str, Settings], List[Dict[str, Any]]]] = None,
) -> Dict[str, Any]:
    """
    Main tutoring pipeline.

    Args:
        message: The user's question (required, non-empty after trimming)
        settings: Process settings (keys, model identifiers, retrieval switch)
        mode: "quick" or "deep"
        context_text: Optional context supplied by the UI
        image: Optional photo forwarded inline to the model
        is_first_turn: Whether this is the first message of the conversation
        complete: Completion gateway; defaults to Gemini via call_llm
        retrieve: Retrieval gateway; defaults to the Supabase store

    Returns:
        Dict with narrative_text, envelope, retrieval and vision keys.
    """
    message = (message or "").strip()
    if not message:
        raise InvalidInput("Empty message")

    complete = complete or functools.partial(call_llm, settings=settings)
    retrieve = retrieve or retrieve_passages

    # 1) Retrieval (never fatal)
    retrieval_info = None
    matches: List[Dict[str, Any]] = []
    if settings.retrieval_enabled:
        matches = retrieve(message, settings)
        retrieval_info = summarize_matches(matches)

    # 2) Prompts
    system_prompt = build_system_prompt(mode)
    user_prompt = build_user_prompt(
        message,
        format_retrieved_context(matches),
        context_text=context_text,
        is_first_turn=is_first_turn,
    )

    # 3) Primary completion
    try:
        if image is not None:
            raw = complete(system_prompt, user_prompt, image=image, image_instruction=PHOTO_INSTRUCTION)
        else:
            raw = complete(system_prompt, user_prompt)
    except TutorError:
        raise
    except Exception as e:
        raise UpstreamFailure(f"LLM call failed: {e}") from e
    logger.debug(f"LLM raw response: {raw}")

    # 4) Envelope extraction / repair, then chart gap filling
    narrative_text, envelope = repair(raw, mode, message, complete)
    envelope = synthesize(envelope, mode, message)

    logger.info(
        f"Answered ({mode}): {len(narrative_text)} chars, {len(envelope['charts'])} chart(s), "
        f"{len(matches)} excerpt(s), image={'yes' if image is not None else 'no'}"
    )

    return safe_json({
        "narrative_text": narrative_text,
        "envelope": envelope,
        "retrieval": retrieval_info,
        "vision": {"received_image": image is not None},
    })
