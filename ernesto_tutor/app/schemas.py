"""
Pydantic request/response models.

Rationale:
- Define simple, explicit input/output contracts for the API.
- Field names are snake_case in Python and camelCase on the wire, as the browser client expects.
- The envelope stays a plain dict: it is model output, repaired and completed server-side.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TutorRequest(_CamelModel):
    message: str = ""
    context_text: Optional[str] = None
    mode: Optional[str] = None
    # Legacy client field: "VITE" / "APPROFONDIE"
    speed: Optional[str] = None
    is_first_turn: bool = False


class RetrievalMatch(_CamelModel):
    similarity: Optional[float] = None
    source_id: Optional[Any] = None
    chunk_index: Optional[int] = None


class RetrievalInfo(_CamelModel):
    used_count: int = 0
    top: List[RetrievalMatch] = []


class VisionInfo(_CamelModel):
    received_image: bool = False


class TutorResponse(_CamelModel):
    narrative_text: str = ""
    envelope: Optional[Dict[str, Any]] = None
    retrieval: Optional[RetrievalInfo] = None
    vision: VisionInfo = VisionInfo()


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
