"""Global configuration management for Vellum."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from contextlib import contextmanager
from contextvars import ContextVar
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict

from .text import Messages

DEFAULT_CONFIG_DIR = Path(os.path.expanduser("~")) / ".vellum"
CONFIG_DIR = DEFAULT_CONFIG_DIR
CONFIG_FILE = CONFIG_DIR / "config.json"
_CONFIG_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "vellum_config_dir_override",
    default=None,
)
DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_LOCAL_MODEL = "BAAI/bge-small-en-v1.5"
DEFAULT_PROVIDER = "openai"
DEFAULT_BATCH_SIZE = 64
DEFAULT_EMBED_CONCURRENCY = 4
# 512 tokens at roughly four characters per token.
DEFAULT_MAX_CHUNK_CHARS = 2048
DEFAULT_EMBED_TIMEOUT = 60.0
DEFAULT_SIMILARITY = "cosine"
DEFAULT_TOP_K = 10
DEFAULT_EXTENSIONS: tuple[str, ...] = (".md", ".markdown", ".mdx", ".org", ".rst", ".txt")
SUPPORTED_PROVIDERS: tuple[str, ...] = (DEFAULT_PROVIDER, "custom", "local")
SUPPORTED_SIMILARITY: tuple[str, ...] = ("cosine", "dot")
ENV_API_KEY = "VELLUM_API_KEY"
OPENAI_ENV = "OPENAI_API_KEY"


@dataclass
class Config:
    api_key: str | None = None
    model: str = DEFAULT_MODEL
    provider: str = DEFAULT_PROVIDER
    base_url: str | None = None
    batch_size: int = DEFAULT_BATCH_SIZE
    embed_concurrency: int = DEFAULT_EMBED_CONCURRENCY
    max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS
    embed_timeout: float = DEFAULT_EMBED_TIMEOUT
    similarity: str = DEFAULT_SIMILARITY
    top_k: int = DEFAULT_TOP_K
    auto_index: bool = True
    include_hidden: bool = False
    respect_gitignore: bool = True
    extensions: tuple[str, ...] = field(default_factory=lambda: DEFAULT_EXTENSIONS)


@dataclass(frozen=True, slots=True)
class IndexSettings:
    """Startup parameters the indexer needs; never read from disk by the core."""

    max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS
    embed_timeout: float = DEFAULT_EMBED_TIMEOUT
    include_hidden: bool = False
    respect_gitignore: bool = True
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS


def index_settings(config: Config) -> IndexSettings:
    return IndexSettings(
        max_chunk_chars=config.max_chunk_chars,
        embed_timeout=config.embed_timeout,
        include_hidden=config.include_hidden,
        respect_gitignore=config.respect_gitignore,
        extensions=tuple(config.extensions),
    )


def _resolve_config_dir() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    return override if override is not None else CONFIG_DIR


def _resolve_config_file() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    if override is not None:
        return override / "config.json"
    return CONFIG_FILE


@contextmanager
def config_dir_context(path: Path | str | None):
    """Temporarily override the config directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CONFIG_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CONFIG_DIR_OVERRIDE.reset(token)


def config_dir() -> Path:
    return _resolve_config_dir()


def local_model_dir() -> Path:
    return _resolve_config_dir() / "models"


def set_config_dir(path: Path | str | None) -> None:
    global CONFIG_DIR, CONFIG_FILE
    if path is None:
        CONFIG_DIR = DEFAULT_CONFIG_DIR
    else:
        dir_path = Path(path).expanduser().resolve()
        if dir_path.exists() and not dir_path.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {dir_path}")
        CONFIG_DIR = dir_path
    CONFIG_FILE = CONFIG_DIR / "config.json"


def load_config() -> Config:
    config_file = _resolve_config_file()
    if not config_file.exists():
        return Config()
    raw = json.loads(config_file.read_text(encoding="utf-8"))
    config = Config()
    _apply_config_payload(config, _coerce_config_payload(raw))
    return config


def save_config(config: Config) -> None:
    directory = _resolve_config_dir()
    directory.mkdir(parents=True, exist_ok=True)
    data: Dict[str, Any] = {}
    if config.api_key:
        data["api_key"] = config.api_key
    if config.model:
        data["model"] = config.model
    if config.provider:
        data["provider"] = config.provider
    if config.base_url:
        data["base_url"] = config.base_url
    data["batch_size"] = config.batch_size
    data["embed_concurrency"] = config.embed_concurrency
    data["max_chunk_chars"] = config.max_chunk_chars
    data["embed_timeout"] = config.embed_timeout
    data["similarity"] = config.similarity
    data["top_k"] = config.top_k
    data["auto_index"] = bool(config.auto_index)
    data["include_hidden"] = bool(config.include_hidden)
    data["respect_gitignore"] = bool(config.respect_gitignore)
    data["extensions"] = list(config.extensions)
    config_file = _resolve_config_file()
    config_file.write_text(
        json.dumps(data, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def config_from_json(
    payload: str | Mapping[str, object], *, base: Config | None = None
) -> Config:
    """Return a Config from a JSON string or mapping without saving it."""
    data = _coerce_config_payload(payload)
    config = Config() if base is None else _clone_config(base)
    _apply_config_payload(config, data)
    return config


def resolve_default_model(provider: str | None, model: str | None) -> str:
    """Return the effective model name for the selected provider."""
    clean_model = (model or "").strip()
    normalized = (provider or DEFAULT_PROVIDER).lower()
    if normalized == "local" and (not clean_model or clean_model == DEFAULT_MODEL):
        return DEFAULT_LOCAL_MODEL
    if clean_model:
        return clean_model
    return DEFAULT_MODEL


def resolve_api_key(configured: str | None, provider: str) -> str | None:
    """Return the first available API key from config or environment."""

    normalized = (provider or DEFAULT_PROVIDER).lower()
    if normalized == "local":
        return None
    if configured:
        return configured
    general = os.getenv(ENV_API_KEY)
    if general:
        return general
    openai_key = os.getenv(OPENAI_ENV)
    if openai_key:
        return openai_key
    return None


def _coerce_config_payload(payload: object) -> Mapping[str, object]:
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    if not isinstance(data, Mapping):
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    return data


def _clone_config(config: Config) -> Config:
    return Config(
        api_key=config.api_key,
        model=config.model,
        provider=config.provider,
        base_url=config.base_url,
        batch_size=config.batch_size,
        embed_concurrency=config.embed_concurrency,
        max_chunk_chars=config.max_chunk_chars,
        embed_timeout=config.embed_timeout,
        similarity=config.similarity,
        top_k=config.top_k,
        auto_index=config.auto_index,
        include_hidden=config.include_hidden,
        respect_gitignore=config.respect_gitignore,
        extensions=tuple(config.extensions),
    )


def _apply_config_payload(config: Config, payload: Mapping[str, object]) -> None:
    if "api_key" in payload:
        config.api_key = _coerce_optional_str(payload["api_key"], "api_key")
    if "model" in payload:
        config.model = _coerce_required_str(payload["model"], "model", DEFAULT_MODEL)
    if "provider" in payload:
        config.provider = _normalize_choice(
            payload["provider"], "provider", DEFAULT_PROVIDER, SUPPORTED_PROVIDERS
        )
    if "base_url" in payload:
        config.base_url = _coerce_optional_str(payload["base_url"], "base_url")
    if "batch_size" in payload:
        config.batch_size = _coerce_int(payload["batch_size"], "batch_size", DEFAULT_BATCH_SIZE)
    if "embed_concurrency" in payload:
        config.embed_concurrency = _coerce_int(
            payload["embed_concurrency"],
            "embed_concurrency",
            DEFAULT_EMBED_CONCURRENCY,
        )
    if "max_chunk_chars" in payload:
        value = _coerce_int(payload["max_chunk_chars"], "max_chunk_chars", DEFAULT_MAX_CHUNK_CHARS)
        if value <= 0:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="max_chunk_chars"))
        config.max_chunk_chars = value
    if "embed_timeout" in payload:
        config.embed_timeout = _coerce_positive_float(
            payload["embed_timeout"], "embed_timeout", DEFAULT_EMBED_TIMEOUT
        )
    if "similarity" in payload:
        config.similarity = _normalize_choice(
            payload["similarity"], "similarity", DEFAULT_SIMILARITY, SUPPORTED_SIMILARITY
        )
    if "top_k" in payload:
        config.top_k = _coerce_int(payload["top_k"], "top_k", DEFAULT_TOP_K)
    if "auto_index" in payload:
        config.auto_index = _coerce_bool(payload["auto_index"], "auto_index")
    if "include_hidden" in payload:
        config.include_hidden = _coerce_bool(payload["include_hidden"], "include_hidden")
    if "respect_gitignore" in payload:
        config.respect_gitignore = _coerce_bool(payload["respect_gitignore"], "respect_gitignore")
    if "extensions" in payload:
        config.extensions = _coerce_extensions(payload["extensions"])


def _coerce_optional_str(value: object, field: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_required_str(value: object, field: str, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or default
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_int(value: object, field: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return default
        try:
            return int(cleaned)
        except ValueError as exc:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_positive_float(value: object, field: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    if number <= 0:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    return number


def _coerce_bool(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned in {"true", "1", "yes", "on"}:
            return True
        if cleaned in {"false", "0", "no", "off"}:
            return False
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _normalize_choice(
    value: object,
    field: str,
    default: str,
    allowed: tuple[str, ...],
) -> str:
    if value is None:
        return default
    if isinstance(value, str):
        normalized = value.strip().lower() or default
        if normalized in allowed:
            return normalized
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_extensions(value: object) -> tuple[str, ...]:
    from .utils import normalize_extensions  # local import

    if value is None:
        return DEFAULT_EXTENSIONS
    if isinstance(value, str):
        value = [part for part in value.split(",")]
    if not isinstance(value, (list, tuple)):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="extensions"))
    if not all(isinstance(item, str) for item in value):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="extensions"))
    return normalize_extensions(value)
