"""
Process-wide settings, loaded once at startup.

Rationale:
- Secrets (Gemini key, Supabase service key, basic-auth pair) are read from the
  environment in one place instead of ad hoc per request.
- load_settings() fails fast with every missing variable named.
"""

import os
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel

from .errors import ConfigurationMissing

DEFAULT_MODEL = "gemini-1.5-flash"
DEFAULT_EMBEDDING_MODEL = "models/gemini-embedding-001"
# match_chunks was indexed with 1536-dimension vectors
DEFAULT_EMBEDDING_DIMENSIONS = 1536

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    gemini_api_key: str
    gemini_model: str = DEFAULT_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS
    supabase_url: str
    supabase_service_role_key: str
    auth_user: str
    auth_password: str
    retrieval_enabled: bool = True
    log_level: str = "INFO"


def _get(env: Mapping[str, str], *keys: str) -> Optional[str]:
    for key in keys:
        value = (env.get(key) or "").strip()
        if value:
            return value
    return None


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment (or an explicit mapping in tests).

    Raises ConfigurationMissing listing every required variable that is unset.
    """
    env = os.environ if env is None else env

    required: Dict[str, tuple] = {
        "gemini_api_key": ("GEMINI_API_KEY", "LLM_API_KEY"),
        "supabase_url": ("SUPABASE_URL",),
        "supabase_service_role_key": ("SUPABASE_SERVICE_ROLE_KEY",),
        "auth_user": ("ERNESTO_USER",),
        "auth_password": ("ERNESTO_PASS",),
    }

    values: Dict[str, object] = {}
    missing: List[str] = []
    for field, keys in required.items():
        value = _get(env, *keys)
        if value is None:
            missing.append(keys[0])
        else:
            values[field] = value
    if missing:
        raise ConfigurationMissing(missing)

    values["gemini_model"] = _get(env, "GEMINI_MODEL") or DEFAULT_MODEL
    values["embedding_model"] = _get(env, "GEMINI_EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL

    dims = _get(env, "EMBEDDING_DIMENSIONS")
    try:
        values["embedding_dimensions"] = int(dims) if dims else DEFAULT_EMBEDDING_DIMENSIONS
    except ValueError:
        raise ConfigurationMissing(["EMBEDDING_DIMENSIONS (integer)"])

    enabled = _get(env, "RETRIEVAL_ENABLED")
    values["retrieval_enabled"] = True if enabled is None else enabled.lower() in _TRUTHY
    values["log_level"] = (_get(env, "LOG_LEVEL") or "INFO").upper()

    return Settings(**values)
