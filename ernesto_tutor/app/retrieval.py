"""
Retrieval of supporting passages from the Supabase vector store.

Rationale:
- Ranking is delegated to the `match_chunks` RPC (pgvector similarity).
- This module only applies the caller-side policy: similarity floor, result cap.
- Retrieval is best effort: any failure yields an empty result and a fallback excerpt text.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx
import pandas as pd

from .config import Settings
from .errors import UpstreamFailure
from .llm_client import embed_query
from .utils import safe_json

logger = logging.getLogger(__name__)

SIMILARITY_FLOOR = 0.2
MAX_MATCHES = 6
RPC_NAME = "match_chunks"
RPC_TIMEOUT = 30.0

NO_EXCERPT_TEXT = "(Aucun extrait pertinent trouvé dans les documents.)"
EXCERPT_SEPARATOR = "\n\n---\n\n"


def call_match_chunks(
    embedding: List[float],
    settings: Settings,
    match_count: int = MAX_MATCHES,
    client: Optional[httpx.Client] = None,
) -> List[Dict[str, Any]]:
    """Call the PostgREST RPC and return its raw, ranked rows."""
    url = f"{settings.supabase_url.rstrip('/')}/rest/v1/rpc/{RPC_NAME}"
    headers = {
        "apikey": settings.supabase_service_role_key,
        "Authorization": f"Bearer {settings.supabase_service_role_key}",
        "Content-Type": "application/json",
    }
    payload = {"query_embedding": embedding, "match_count": match_count}

    owns_client = client is None
    client = client or httpx.Client(timeout=RPC_TIMEOUT)
    try:
        response = client.post(url, json=payload, headers=headers)
        response.raise_for_status()
        rows = response.json()
    finally:
        if owns_client:
            client.close()

    if not isinstance(rows, list):
        raise UpstreamFailure(f"{RPC_NAME} returned {type(rows).__name__}, expected a list")
    return rows


def select_matches(matches: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop matches under the similarity floor and keep at most MAX_MATCHES, in rank order."""
    rows = [m for m in matches or [] if isinstance(m, dict)]
    if not rows:
        return []

    df = pd.DataFrame(rows)
    if "similarity" not in df.columns:
        df["similarity"] = 0.0
    df["similarity"] = pd.to_numeric(df["similarity"], errors="coerce").fillna(0.0)

    kept = df[df["similarity"] >= SIMILARITY_FLOOR].head(MAX_MATCHES)
    kept = kept.astype(object).where(kept.notna(), None)
    return safe_json(kept.to_dict(orient="records"))


def format_retrieved_context(matches: List[Dict[str, Any]]) -> str:
    if not matches:
        return NO_EXCERPT_TEXT
    return EXCERPT_SEPARATOR.join(
        f"EXTRAIT #{i + 1} (sim={float(m.get('similarity') or 0):.2f}):\n{m.get('content') or ''}"
        for i, m in enumerate(matches)
    )


def summarize_matches(matches: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Retrieval metadata returned to the browser client."""
    return {
        "used_count": len(matches),
        "top": [
            {
                "similarity": m.get("similarity"),
                "source_id": m.get("document_id"),
                "chunk_index": m.get("chunk_index"),
            }
            for m in matches
        ],
    }


def retrieve_passages(
    message: str,
    settings: Settings,
    embed: Callable[[str, Settings], List[float]] = embed_query,
    search: Callable[..., List[Dict[str, Any]]] = call_match_chunks,
) -> List[Dict[str, Any]]:
    """
    Embed the question, query the store and apply the similarity floor.

    Failures are logged and produce an empty list; they never fail the request.
    """
    try:
        embedding = embed(message, settings)
        matches = search(embedding, settings, match_count=MAX_MATCHES)
    except Exception as e:
        logger.warning(f"{RPC_NAME} retrieval failed, continuing without excerpts: {type(e).__name__}: {e}")
        return []

    selected = select_matches(matches)
    logger.info(f"Retrieval: {len(matches)} match(es) returned, {len(selected)} kept (floor={SIMILARITY_FLOOR})")
    return selected
