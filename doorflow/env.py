from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from .constants import DEFAULT_BASE_PATH, DEFAULT_REFRESH_BUFFER_SECONDS, DEFAULT_SCOPES, LOGGER

REQUIRED_ENV = (
    "DOORFLOW_CLIENT_ID",
    "DOORFLOW_REDIRECT_URI",
    "DOORFLOW_WEBHOOK_SECRET",
)

_HTTP_URL = TypeAdapter(AnyHttpUrl)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def get_scopes() -> list[str]:
    raw = os.getenv("DOORFLOW_SCOPES", "").split()
    return raw or list(DEFAULT_SCOPES)


def get_base_url() -> str:
    return os.getenv("DOORFLOW_BASE_URL", "").strip() or DEFAULT_BASE_PATH


def get_refresh_buffer_seconds() -> int:
    return get_env_int("DOORFLOW_REFRESH_BUFFER_SECONDS", DEFAULT_REFRESH_BUFFER_SECONDS)


def use_pkce() -> bool:
    raw = os.getenv("DOORFLOW_USE_PKCE")
    if raw is None or not raw.strip():
        # Public clients have no secret and must prove possession with PKCE.
        return not os.getenv("DOORFLOW_CLIENT_SECRET", "").strip()
    return is_truthy(raw)


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    missing = [key for key in REQUIRED_ENV if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    for key in ("DOORFLOW_REDIRECT_URI", "DOORFLOW_BASE_URL"):
        value = os.getenv(key, "").strip()
        if not value:
            continue
        try:
            _HTTP_URL.validate_python(value)
        except ValidationError as error:
            raise RuntimeError(
                f"{key} must be a valid HTTP(S) URL (for example: https://app.example.com/callback)."
            ) from error

    if get_refresh_buffer_seconds() < 0:
        raise RuntimeError("DOORFLOW_REFRESH_BUFFER_SECONDS must not be negative.")


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("DOORFLOW_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
