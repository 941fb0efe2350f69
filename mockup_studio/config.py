"""
config.py - environment-driven configuration.

Values come from the process environment (populated from .env by the CLI via
python-dotenv). Gemini credentials may be supplied as a list or as singleton
variables; all sources are merged and deduplicated in order:

  GEMINI_API_KEYS / API_KEYS   JSON array (or comma separated list)
  GEMINI_API_KEY               single key
  API_KEY                      single key
  VITE_API_KEY                 single key (shared .env with the web build)
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)

LIST_KEY_VARS   = ("GEMINI_API_KEYS", "API_KEYS")
SINGLE_KEY_VARS = ("GEMINI_API_KEY", "API_KEY", "VITE_API_KEY")

DEFAULT_STATE_DIR   = Path.home() / ".mockup_studio"
DEFAULT_TEXT_MODEL  = "gemini-3-flash-preview"
DEFAULT_IMAGE_MODEL = "gemini-3-pro-image-preview"
DEFAULT_EDIT_MODEL  = "gemini-2.5-flash-image"


@dataclass(frozen=True)
class KeyPoolConfig:
    """Circuit breaker tuning. All durations in seconds."""
    max_consecutive_failures: int = 5
    transient_cooldown: float = 60.0
    quota_cooldown: float = 5 * 60.0
    half_open_delay: float = 60.0


@dataclass
class StudioSettings:
    api_keys: List[str]
    state_dir: Path = DEFAULT_STATE_DIR
    text_model: str = DEFAULT_TEXT_MODEL
    image_model: str = DEFAULT_IMAGE_MODEL
    edit_model: str = DEFAULT_EDIT_MODEL
    capture_max_dim: int = 1280
    jpeg_quality: int = 85
    initial_credits: int = 3
    request_timeout: float = 90.0

    @property
    def state_file(self) -> Path:
        return self.state_dir / "state.json"


def _split_key_list(raw: str, var: str) -> List[str]:
    raw = raw.strip()
    if not raw:
        return []
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Failed to parse %s as a JSON list; ignoring it", var)
            return []
        if not isinstance(parsed, list):
            logger.warning("%s is not a list; ignoring it", var)
            return []
        return [str(k) for k in parsed if k]
    return [k for k in re.split(r"[,\s]+", raw) if k]


def load_api_keys(env: Optional[Mapping[str, str]] = None) -> List[str]:
    """Collect every configured Gemini key, deduplicated, first occurrence wins."""
    env = os.environ if env is None else env
    keys: List[str] = []

    for var in LIST_KEY_VARS:
        if env.get(var):
            keys.extend(_split_key_list(env[var], var))

    for var in SINGLE_KEY_VARS:
        value = (env.get(var) or "").strip()
        if value:
            keys.append(value)

    return list(dict.fromkeys(k.strip() for k in keys if k and k.strip()))


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %d", name, raw, default)
        return default


def load_settings(env: Optional[Mapping[str, str]] = None) -> StudioSettings:
    env = os.environ if env is None else env
    state_dir = env.get("STUDIO_STATE_DIR")
    return StudioSettings(
        api_keys=load_api_keys(env),
        state_dir=Path(state_dir).expanduser() if state_dir else DEFAULT_STATE_DIR,
        text_model=env.get("STUDIO_TEXT_MODEL") or DEFAULT_TEXT_MODEL,
        image_model=env.get("STUDIO_IMAGE_MODEL") or DEFAULT_IMAGE_MODEL,
        edit_model=env.get("STUDIO_EDIT_MODEL") or DEFAULT_EDIT_MODEL,
        capture_max_dim=_int_env(env, "STUDIO_CAPTURE_MAX_DIM", 1280),
        jpeg_quality=_int_env(env, "STUDIO_JPEG_QUALITY", 85),
        initial_credits=_int_env(env, "STUDIO_INITIAL_CREDITS", 3),
        request_timeout=float(_int_env(env, "STUDIO_REQUEST_TIMEOUT", 90)),
    )
