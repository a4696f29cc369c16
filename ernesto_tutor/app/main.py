"""
FastAPI entrypoint with a single /api/tutor route.

Consolidates all input parsing:
- JSON body ({message, contextText, mode|speed, isFirstTurn})
- multipart/form-data with the same fields plus an optional `image` file
- Settings are loaded once, before any request is served (fail fast)

Run with: uvicorn ernesto_tutor.app.main:create_app --factory
"""

import asyncio
import functools
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from .auth import require_basic_auth
from .config import Settings, load_settings
from .errors import InvalidInput, TutorError
from .llm_client import InlineImage
from .schemas import ErrorResponse, HealthResponse, TutorRequest, TutorResponse
from .tutor import answer_question
from .utils import normalize_mode, parse_bool

DEFAULT_IMAGE_MIME = "image/jpeg"


async def _read_image(upload: Any) -> Optional[InlineImage]:
    """Read an uploaded photo into raw bytes; an empty or missing file means no image."""
    if not isinstance(upload, UploadFile):
        return None
    data = await upload.read()
    if not data:
        return None
    return InlineImage(data=data, mime_type=upload.content_type or DEFAULT_IMAGE_MIME)


async def _parse_request(request: Request):
    """Return (TutorRequest, image) from either a JSON or a multipart body."""
    content_type = request.headers.get("content-type", "")

    if "multipart/form-data" in content_type:
        form = await request.form()
        try:
            payload = TutorRequest(
                message=form.get("message") or "",
                context_text=form.get("contextText") or None,
                mode=form.get("mode"),
                speed=form.get("speed"),
                is_first_turn=parse_bool(form.get("isFirstTurn")),
            )
        except ValidationError as e:
            raise InvalidInput(str(e))
        return payload, await _read_image(form.get("image"))

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidInput(f"Body must be valid JSON: {e}")
    if not isinstance(body, dict):
        raise InvalidInput("Body must be a JSON object")
    try:
        return TutorRequest.model_validate(body), None
    except ValidationError as e:
        raise InvalidInput(str(e))


def _error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, details=details).model_dump(),
    )


def create_app(
    settings: Optional[Settings] = None,
    complete: Optional[Callable[..., str]] = None,
    retrieve: Optional[Callable[[str, Settings], List[Dict[str, Any]]]] = None,
) -> FastAPI:
    """
    Create the tutor application.

    `complete` and `retrieve` replace the Gemini / Supabase gateways (tests, local runs).
    Raises ConfigurationMissing when settings are not supplied and the environment is incomplete.
    """
    settings = settings or load_settings()
    logging.getLogger().setLevel(settings.log_level)
    logger.info(
        f"Starting tutor service: model={settings.gemini_model}, retrieval={'on' if settings.retrieval_enabled else 'off'}"
    )

    app = FastAPI(title="Ernesto Tutor", dependencies=[Depends(require_basic_auth(settings))])

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/api/tutor", response_model=TutorResponse)
    async def tutor_endpoint(request: Request) -> TutorResponse:
        payload, image = await _parse_request(request)

        run = functools.partial(
            answer_question,
            payload.message,
            settings,
            mode=normalize_mode(payload.mode or payload.speed),
            context_text=payload.context_text,
            image=image,
            is_first_turn=payload.is_first_turn,
            complete=complete,
            retrieve=retrieve,
        )
        # The pipeline blocks on network calls; keep it off the event loop
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, run)
        return TutorResponse.model_validate(result)

    @app.exception_handler(TutorError)
    async def tutor_error_handler(_: Request, exc: TutorError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc}")
        return _error_response(exc.status_code, exc.label, str(exc))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error while answering")
        return _error_response(500, "Server error", str(exc))

    return app


def run_service(host: str = "0.0.0.0", port: int = 8000) -> None:
    import uvicorn

    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    run_service()
