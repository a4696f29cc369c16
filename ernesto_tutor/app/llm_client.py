"""
Minimal LLM client wrapper using Google Gemini.

Rationale:
- Use google-generativeai SDK for robust Gemini access.
- Keep interface tiny: call_llm(system_prompt, user_prompt, settings, image=...) -> str.
- No retries here: the envelope repair ladder (envelope.py) is the only second attempt.
"""

import logging
from typing import List, NamedTuple, Optional

import google.generativeai as genai

from .config import Settings
from .errors import UpstreamFailure

logger = logging.getLogger(__name__)

MAX_TOKENS_FINISH_REASON = 2


class InlineImage(NamedTuple):
    data: bytes
    mime_type: str = "image/jpeg"


def call_llm(
    system_prompt: str,
    user_prompt: str,
    settings: Settings,
    image: Optional[InlineImage] = None,
    image_instruction: Optional[str] = None,
    max_tokens: int = 4096,
    json_only: bool = False,
) -> str:
    """
    Call Gemini with a system instruction, the user prompt and at most one image.

    The image (if any) is sent inline, preceded by `image_instruction`.
    Raises UpstreamFailure when the SDK fails or returns no usable text.
    """
    parts: List = [user_prompt]
    if image is not None:
        if image_instruction:
            parts.append(image_instruction)
        parts.append({"mime_type": image.mime_type, "data": image.data})

    try:
        genai.configure(api_key=settings.gemini_api_key)

        # Initialize model with system instruction
        model = genai.GenerativeModel(
            model_name=settings.gemini_model,
            system_instruction=system_prompt,
        )

        config = genai.GenerationConfig(
            max_output_tokens=max_tokens,
            temperature=0.1 if json_only else 0.4,
            response_mime_type="application/json" if json_only else "text/plain",
        )

        response = model.generate_content(parts, generation_config=config)
    except Exception as e:
        raise UpstreamFailure(f"Gemini API error: {e}") from e

    # Check if response has text
    try:
        result = response.text
    except ValueError:
        # Safety block or other finish reasons leave response.text unavailable
        if not response.candidates:
            raise UpstreamFailure("Gemini returned no candidates.")
        candidate = response.candidates[0]
        if candidate.finish_reason != MAX_TOKENS_FINISH_REASON:
            raise UpstreamFailure(f"Gemini blocked response. Finish reason: {candidate.finish_reason}")
        if not (candidate.content and candidate.content.parts):
            raise UpstreamFailure("Gemini response truncated with no content.")
        logger.warning("Gemini response truncated at max tokens; keeping partial text")
        result = candidate.content.parts[0].text

    if not result:
        raise UpstreamFailure("Gemini returned empty response")

    return result


def embed_query(text: str, settings: Settings) -> List[float]:
    """Embed the question for vector search against the document store."""
    try:
        genai.configure(api_key=settings.gemini_api_key)
        result = genai.embed_content(
            model=settings.embedding_model,
            content=text,
            task_type="retrieval_query",
            output_dimensionality=settings.embedding_dimensions,
        )
    except Exception as e:
        raise UpstreamFailure(f"Gemini embedding error: {e}") from e

    embedding = result.get("embedding") if isinstance(result, dict) else None
    if not embedding:
        raise UpstreamFailure("Gemini returned an empty embedding")
    return list(embedding)
