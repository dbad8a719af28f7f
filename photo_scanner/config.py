from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

from .errors import ConfigurationError


@dataclass(frozen=True)
class ScannerConfig:
    api_base: str = "http://localhost:11434/v1"
    api_key: str = ""

    vision_model: str = "llava:13b"
    embedding_model: str = "mxbai-embed-large"
    chat_model: str = "llama3.1:8b"

    lancedb_uri: str = str(Path.home() / ".photo_scanner" / "vectors.lance")
    collection_name: str = "photos"
    embedding_dimension: int = 1024

    concurrency: int = 2
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_jitter: float = 0.25
    request_timeout: float = 120.0
    connect_timeout: float = 10.0

    max_image_dim: int = 672
    description_max_tokens: int = 512
    preview_width: int = 160
    preview_height: int = 120
    preview_quality: int = 75

    force: bool = False
    use_person_hint: bool = True
    use_folder_hint: bool = True
    use_location_hint: bool = True
    regenerate_prefixes: tuple[str, ...] = ()

    supported_exts: tuple[str, ...] = (".jpg", ".jpeg")
    exiftool_path: str | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> "ScannerConfig":
        env = os.environ if env is None else env
        values: dict[str, Any] = {}

        for key, name in _STRING_VARS.items():
            if env.get(key):
                values[name] = env[key]
        for key, name in _INT_VARS.items():
            if env.get(key):
                values[name] = _parse_int(key, env[key])
        if env.get("PHOTO_SCANNER_TIMEOUT"):
            values["request_timeout"] = _parse_float("PHOTO_SCANNER_TIMEOUT", env["PHOTO_SCANNER_TIMEOUT"])
        if env.get("PHOTO_SCANNER_EXTENSIONS"):
            values["supported_exts"] = parse_extensions(env["PHOTO_SCANNER_EXTENSIONS"])
        if env.get("PHOTO_SCANNER_REGENERATE_PREFIXES"):
            values["regenerate_prefixes"] = tuple(
                p.strip() for p in env["PHOTO_SCANNER_REGENERATE_PREFIXES"].split("|") if p.strip()
            )

        values.update({k: v for k, v in overrides.items() if v is not None})
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        return cls(**values).validated()

    def validated(self) -> "ScannerConfig":
        if not self.api_base.startswith(("http://", "https://")):
            raise ConfigurationError(f"api_base must be an http(s) URL, got {self.api_base!r}")
        if self.concurrency < 1:
            raise ConfigurationError("concurrency must be at least 1")
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.embedding_dimension < 1:
            raise ConfigurationError("embedding_dimension must be positive")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if not self.supported_exts:
            raise ConfigurationError("at least one image extension is required")
        return self


_STRING_VARS = {
    "CHAT_API_BASE": "api_base",
    "CHAT_API_KEY": "api_key",
    "CHAT_MODEL_IMAGE": "vision_model",
    "CHAT_MODEL_EMBEDDINGS": "embedding_model",
    "CHAT_MODEL": "chat_model",
    "PHOTO_SCANNER_LANCEDB": "lancedb_uri",
    "PHOTO_SCANNER_COLLECTION": "collection_name",
    "PHOTO_SCANNER_EXIFTOOL": "exiftool_path",
}

_INT_VARS = {
    "PHOTO_SCANNER_DIMENSION": "embedding_dimension",
    "PHOTO_SCANNER_CONCURRENCY": "concurrency",
    "PHOTO_SCANNER_MAX_ATTEMPTS": "max_attempts",
}


def parse_extensions(raw: str) -> tuple[str, ...]:
    exts = []
    for part in raw.split(","):
        part = part.strip().lower()
        if not part:
            continue
        exts.append(part if part.startswith(".") else f".{part}")
    return tuple(dict.fromkeys(exts))


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


def _parse_float(key: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc
