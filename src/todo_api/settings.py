from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/todos.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - ENABLE_BASIC_AUTH: 'true' to enable optional HTTP Basic Auth (default: false)
    - BASIC_AUTH_USERNAME: username for basic auth (required when ENABLE_BASIC_AUTH=true)
    - BASIC_AUTH_PASSWORD: password for basic auth (required when ENABLE_BASIC_AUTH=true)
    - DEFAULT_USER_ID: identity that owns all data when basic auth is disabled. Default 'local'
    - RANKING_ALGORITHM: 'nonlinear' (default) or 'linear'
    - OPENAI_API_KEY: key for the transcription/extraction endpoints; voice is disabled without it
    - OPENAI_BASE_URL: OpenAI-compatible API root. Default 'https://api.openai.com/v1'
    - TRANSCRIPTION_MODEL / TRANSCRIPTION_LANGUAGE: default 'whisper-1' / 'en'
    - EXTRACTION_MODEL: default 'gpt-4o-mini'
    - VOICE_TIMEOUT_SECONDS: read timeout for upstream voice calls. Default 120
    - LOG_LEVEL: loguru level name. Default 'INFO'
    - HOST / PORT: bind address for `todo-api` runner. Default 127.0.0.1:8000
    """

    persistence_backend: str
    sqlite_db_path: str
    cors_allow_origins: List[str]
    enable_basic_auth: bool
    basic_auth_username: Optional[str]
    basic_auth_password: Optional[str]
    default_user_id: str = "local"
    ranking_algorithm: str = "nonlinear"
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    transcription_model: str = "whisper-1"
    transcription_language: str = "en"
    extraction_model: str = "gpt-4o-mini"
    voice_timeout_seconds: float = 120.0
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_bool(value: str, default: bool = False) -> bool:
    v = value.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_float(value: str, default: float) -> float:
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _parse_int(value: str, default: int) -> int:
    try:
        return int(value)
    except ValueError:
        return default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        # Star will be handled in main via allow_origins=["*"]
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        # Fallback to memory if unsupported
        backend = "memory"

    sqlite_path = _get_env("SQLITE_DB_PATH", "./data/todos.db").strip()
    cors_raw = _get_env("CORS_ALLOW_ORIGINS", "*")
    origins = _parse_origins(cors_raw)

    enable_basic_auth = _parse_bool(_get_env("ENABLE_BASIC_AUTH", "false"), False)
    basic_user = os.getenv("BASIC_AUTH_USERNAME") if enable_basic_auth else None
    basic_pass = os.getenv("BASIC_AUTH_PASSWORD") if enable_basic_auth else None

    algorithm = _get_env("RANKING_ALGORITHM", "nonlinear").strip().lower()
    if algorithm not in {"nonlinear", "linear"}:
        algorithm = "nonlinear"

    api_key = os.getenv("OPENAI_API_KEY") or None

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=sqlite_path,
        cors_allow_origins=origins,
        enable_basic_auth=enable_basic_auth,
        basic_auth_username=basic_user,
        basic_auth_password=basic_pass,
        default_user_id=_get_env("DEFAULT_USER_ID", "local").strip(),
        ranking_algorithm=algorithm,
        openai_api_key=api_key,
        openai_base_url=_get_env("OPENAI_BASE_URL", "https://api.openai.com/v1").strip().rstrip("/"),
        transcription_model=_get_env("TRANSCRIPTION_MODEL", "whisper-1").strip(),
        transcription_language=_get_env("TRANSCRIPTION_LANGUAGE", "en").strip(),
        extraction_model=_get_env("EXTRACTION_MODEL", "gpt-4o-mini").strip(),
        voice_timeout_seconds=_parse_float(_get_env("VOICE_TIMEOUT_SECONDS", "120"), 120.0),
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
        host=_get_env("HOST", "127.0.0.1").strip(),
        port=_parse_int(_get_env("PORT", "8000"), 8000),
    )
