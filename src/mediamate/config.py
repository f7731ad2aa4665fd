from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_CONFIG_YAML = """llm:
  provider: "claude"
  api_key: ""
  model: "claude-sonnet-4-20250514"
  base_url: "https://api.anthropic.com"

tmdb:
  api_key: ""

# radarr:
#   url: "http://localhost:7878"
#   api_key: ""
#   quality_profile: ""
#   root_folder: ""

# qbittorrent:
#   url: "http://localhost:8080"
#   username: ""
#   password: ""

# jellyfin:
#   url: "http://localhost:8096"
#   api_key: ""

access:
  allowed_user_ids: []

app:
  log_level: "info"

http:
  timeout_seconds: 30
  retries: 3
"""

# (environment variable, section, key)
_ENV_OVERRIDES = (
    ("MEDIAMATE_LLM_API_KEY", "llm", "api_key"),
    ("MEDIAMATE_LLM_MODEL", "llm", "model"),
    ("MEDIAMATE_LLM_BASE_URL", "llm", "base_url"),
    ("MEDIAMATE_TMDB_API_KEY", "tmdb", "api_key"),
    ("MEDIAMATE_RADARR_URL", "radarr", "url"),
    ("MEDIAMATE_RADARR_API_KEY", "radarr", "api_key"),
    ("MEDIAMATE_QBITTORRENT_URL", "qbittorrent", "url"),
    ("MEDIAMATE_QBITTORRENT_USERNAME", "qbittorrent", "username"),
    ("MEDIAMATE_QBITTORRENT_PASSWORD", "qbittorrent", "password"),
    ("MEDIAMATE_JELLYFIN_URL", "jellyfin", "url"),
    ("MEDIAMATE_JELLYFIN_API_KEY", "jellyfin", "api_key"),
    ("MEDIAMATE_LOG_LEVEL", "app", "log_level"),
)

_LOG_LEVELS = {"debug", "info", "warn", "warning", "error"}


class ConfigMissingError(RuntimeError):
    pass


def _normalize_url(value: str, field_name: str) -> str:
    value = value.strip().rstrip("/")
    if not value.startswith(("http://", "https://")):
        raise ValueError(f"{field_name} must start with http:// or https://")
    return value


class LLMConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    provider: str = "claude"
    api_key: str = Field(min_length=1)
    model: str = "claude-sonnet-4-20250514"
    base_url: str = "https://api.anthropic.com"
    max_tokens: int = Field(default=4096, ge=1)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, value: str) -> str:
        value = value.strip().lower()
        if value != "claude":
            raise ValueError("llm.provider must be 'claude'")
        return value

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        return _normalize_url(value, "llm.base_url")


class TMDbConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_key: str = ""
    base_url: str = "https://api.themoviedb.org/3"
    cache_ttl_seconds: int = Field(default=900, ge=0)

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        return _normalize_url(value, "tmdb.base_url")


class RadarrConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str
    api_key: str = Field(min_length=1)
    quality_profile: str = ""
    root_folder: str = ""

    @field_validator("url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        return _normalize_url(value, "radarr.url")


class QBittorrentConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)

    @field_validator("url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        return _normalize_url(value, "qbittorrent.url")


class JellyfinConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str
    api_key: str = Field(min_length=1)

    @field_validator("url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        return _normalize_url(value, "jellyfin.url")


class AccessConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    allowed_user_ids: list[str] = Field(default_factory=list)

    @field_validator("allowed_user_ids", mode="before")
    @classmethod
    def normalize_user_ids(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(item).strip() for item in value if str(item).strip()]
        return value


class AppSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    log_level: str = "info"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        value = value.strip().lower() or "info"
        if value not in _LOG_LEVELS:
            raise ValueError(f"app.log_level must be one of {sorted(_LOG_LEVELS)}")
        return value

    @property
    def logging_level(self) -> str:
        return "WARNING" if self.log_level == "warn" else self.log_level.upper()


class HttpConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    timeout_seconds: int = Field(default=30, ge=1)
    retries: int = Field(default=3, ge=0)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    llm: LLMConfig
    tmdb: TMDbConfig = Field(default_factory=TMDbConfig)
    radarr: RadarrConfig | None = None
    qbittorrent: QBittorrentConfig | None = None
    jellyfin: JellyfinConfig | None = None
    access: AccessConfig = Field(default_factory=AccessConfig)
    app: AppSettings = Field(default_factory=AppSettings)
    http: HttpConfig = Field(default_factory=HttpConfig)


def resolve_config_path(project_root: Path | None = None) -> Path:
    override = os.getenv("MEDIAMATE_CONFIG")
    if override:
        return Path(override).expanduser().resolve()

    root = project_root or Path.cwd()
    return root / ".mediamate" / "config.yaml"


def ensure_config_exists(path: Path) -> bool:
    if path.exists():
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_YAML, encoding="utf-8")
    return True


def apply_env_overrides(raw: dict[str, Any], environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Overlay MEDIAMATE_* variables onto a parsed config mapping.

    Setting any variable of an optional section (radarr, qbittorrent,
    jellyfin) creates that section.
    """
    env = os.environ if environ is None else environ
    merged = dict(raw)
    for variable, section, key in _ENV_OVERRIDES:
        value = env.get(variable, "")
        if not value:
            continue
        current = merged.get(section)
        updated = dict(current) if isinstance(current, dict) else {}
        updated[key] = value
        merged[section] = updated
    return merged


def load_config(path: Path | None = None, environ: Mapping[str, str] | None = None) -> AppConfig:
    config_path = path or resolve_config_path()
    if not config_path.exists():
        raise ConfigMissingError(f"Config file not found: {config_path}")
    if config_path.is_dir():
        raise ConfigMissingError(f"Config path is a directory, not a file: {config_path}")

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise RuntimeError(f"Invalid config format in {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise RuntimeError(f"Invalid config format in {config_path}: expected a mapping")
    raw = apply_env_overrides(raw, environ)
    try:
        return AppConfig.model_validate(raw)
    except Exception as exc:
        raise RuntimeError(f"Invalid config format in {config_path}: {exc}") from exc
