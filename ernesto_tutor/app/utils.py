"""
Small utilities: request field coercion and JSON-safe conversion.

Rationale:
- The browser client sends form fields as strings ("true", "APPROFONDIE"); coerce them in one place.
- Convert pandas/numpy types to native Python types so responses always serialize.
"""

import json
import math
import os
from typing import Any, Optional

import numpy as np

PROMPTS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "prompts")

MODE_ALIASES = {
    "quick": "quick",
    "vite": "quick",
    "deep": "deep",
    "approfondie": "deep",
}


def read_prompt(path: str) -> str:
    """Read a prompt text file."""
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def normalize_mode(value: Optional[str]) -> str:
    """Map 'quick'/'deep' and the client's 'VITE'/'APPROFONDIE' to a mode; default 'quick'."""
    return MODE_ALIASES.get((value or "").strip().lower(), "quick")


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def safe_json(obj):
    """
    Convert pandas/numpy types to Python native types (NaN becomes None).
    Rationale: ensure response is JSON serializable for API responses.
    """
    def convert(o):
        if isinstance(o, float):
            return o if math.isfinite(o) else None
        if isinstance(o, (int, str, bool)) or o is None:
            return o
        if isinstance(o, (np.integer, np.floating, np.bool_)):
            return convert(o.item())
        if isinstance(o, dict):
            return {convert(k): convert(v) for k, v in o.items()}
        if isinstance(o, (list, tuple)):
            return [convert(x) for x in o]
        try:
            return json.loads(json.dumps(o))
        except (TypeError, ValueError):
            return str(o)
    return convert(obj)
