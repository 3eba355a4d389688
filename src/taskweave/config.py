"""Project configuration: role bindings, global defaults and env overrides."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from taskweave.catalog import get_model_info, is_known_model
from taskweave.errors import ConfigurationError
from taskweave.io_utils import read_text, write_text
from taskweave.log import Logger, NullLogger
from taskweave.providers.registry import PROVIDER_NAMES
from taskweave.tasks.model import PRIORITIES

ROLE_NAMES = ("main", "research", "fallback")

CONFIG_DIR = ".taskweave"
CONFIG_FILE = "config.json"
TASKS_FILE = "tasks.json"
STATE_FILE = "state.json"


@dataclass
class RoleBinding:
    """Provider, model and generation parameters bound to one role."""

    provider: str | None = None
    model_id: str | None = None
    max_tokens: int = 64000
    temperature: float = 0.2
    base_url: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.provider and self.model_id)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "provider": self.provider,
            "modelId": self.model_id,
            "maxTokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if self.base_url:
            out["baseURL"] = self.base_url
        return out


@dataclass
class GlobalSettings:
    default_tag: str = "master"
    log_level: str = "info"
    debug: bool = False
    default_priority: str = "medium"
    default_subtasks: int = 5
    base_urls: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "defaultTag": self.default_tag,
            "logLevel": self.log_level,
            "debug": self.debug,
            "defaultPriority": self.default_priority,
            "defaultSubtasks": self.default_subtasks,
            "baseUrls": dict(self.base_urls),
        }


def _default_models() -> dict[str, RoleBinding]:
    return {
        "main": RoleBinding("anthropic", "claude-sonnet-4-20250514", 64000, 0.2),
        "research": RoleBinding("perplexity", "sonar-pro", 8700, 0.1),
        "fallback": RoleBinding(None, None, 64000, 0.2),
    }


@dataclass
class Config:
    """Runtime configuration for a project."""

    models: dict[str, RoleBinding] = field(default_factory=_default_models)
    settings: GlobalSettings = field(default_factory=GlobalSettings)

    # Role configuration contract used by the resolver.

    def binding(self, role: str) -> RoleBinding:
        return self.models.get(role) or RoleBinding()

    def get_provider(self, role: str) -> str | None:
        return self.binding(role).provider

    def get_model(self, role: str) -> str | None:
        return self.binding(role).model_id

    def get_parameters(self, role: str) -> dict[str, Any]:
        b = self.binding(role)
        return {"max_tokens": b.max_tokens, "temperature": b.temperature}

    def base_url_for(self, role: str) -> str | None:
        b = self.binding(role)
        if b.base_url:
            return b.base_url
        if b.provider:
            return self.settings.base_urls.get(b.provider)
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "models": {role: b.to_dict() for role, b in self.models.items()},
            "global": self.settings.to_dict(),
        }


def config_path(project_root: Path) -> Path:
    return project_root / CONFIG_DIR / CONFIG_FILE


def tasks_path(project_root: Path) -> Path:
    return project_root / CONFIG_DIR / TASKS_FILE


def state_path(project_root: Path) -> Path:
    return project_root / CONFIG_DIR / STATE_FILE


def _validate_provider(role: str, provider: str | None) -> None:
    if provider is None:
        return
    if provider not in PROVIDER_NAMES:
        allowed = ", ".join(PROVIDER_NAMES)
        raise ConfigurationError(
            f"Invalid provider '{provider}' for role '{role}'. Valid providers: {allowed}.",
            {"role": role, "provider": provider},
        )


def _role_from_dict(role: str, raw: Any, default: RoleBinding) -> RoleBinding:
    if raw is None:
        return default
    if not isinstance(raw, dict):
        raise ConfigurationError(f"models.{role} must be an object")

    provider = raw.get("provider", default.provider)
    if isinstance(provider, str):
        provider = provider.strip().lower() or None
    _validate_provider(role, provider)

    try:
        max_tokens = int(raw.get("maxTokens", default.max_tokens))
        temperature = float(raw.get("temperature", default.temperature))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"models.{role} has a non-numeric parameter: {exc}") from exc
    if max_tokens <= 0:
        raise ConfigurationError(f"models.{role}.maxTokens must be > 0")
    if not 0 <= temperature <= 2:
        raise ConfigurationError(f"models.{role}.temperature must be between 0 and 2")

    return RoleBinding(
        provider=provider,
        model_id=raw.get("modelId", default.model_id if provider == default.provider else None),
        max_tokens=max_tokens,
        temperature=temperature,
        base_url=raw.get("baseURL") or None,
    )


def _settings_from_dict(raw: Any) -> GlobalSettings:
    if not isinstance(raw, dict):
        raise ConfigurationError("global must be an object")

    subtasks = raw.get("defaultSubtasks", 5)
    if isinstance(subtasks, str) and subtasks.strip().isdigit():
        subtasks = int(subtasks)
    if isinstance(subtasks, bool) or not isinstance(subtasks, int) or subtasks <= 0:
        raise ConfigurationError(
            f"global.defaultSubtasks must be a positive integer, got {subtasks!r}",
            {"key": "defaultSubtasks"},
        )

    priority = raw.get("defaultPriority", "medium")
    if priority not in PRIORITIES:
        raise ConfigurationError(
            f"global.defaultPriority must be one of {', '.join(PRIORITIES)}, got {priority!r}",
            {"key": "defaultPriority"},
        )

    return GlobalSettings(
        default_tag=raw.get("defaultTag", "master"),
        log_level=raw.get("logLevel", "info"),
        debug=bool(raw.get("debug", False)),
        default_priority=priority,
        default_subtasks=subtasks,
        base_urls=dict(raw.get("baseUrls") or {}),
    )


def config_from_dict(data: dict[str, Any]) -> Config:
    defaults = _default_models()
    raw_models = data.get("models") or {}
    models = {role: _role_from_dict(role, raw_models.get(role), defaults[role]) for role in ROLE_NAMES}
    return Config(models=models, settings=_settings_from_dict(data.get("global") or {}))


def _apply_env(cfg: Config) -> Config:
    debug = os.environ.get("TASKWEAVE_DEBUG", "").strip().lower()
    if debug in ("1", "true", "yes", "on"):
        cfg.settings.debug = True
    elif debug in ("0", "false", "no", "off"):
        cfg.settings.debug = False
    level = os.environ.get("TASKWEAVE_LOG_LEVEL")
    if level:
        cfg.settings.log_level = level.strip().lower()
    return cfg


def load_config(project_root: Path) -> Config:
    """Load ``.taskweave/config.json`` merged onto defaults.

    A missing file yields defaults.  Unknown providers and malformed values
    raise :class:`ConfigurationError` here rather than at call time.
    """
    path = config_path(project_root)
    if not path.is_file():
        return _apply_env(Config())
    try:
        data = json.loads(read_text(path))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Could not parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    return _apply_env(config_from_dict(data))


def save_config(project_root: Path, cfg: Config) -> Path:
    path = config_path(project_root)
    path.parent.mkdir(parents=True, exist_ok=True)
    write_text(path, json.dumps(cfg.to_dict(), indent=2) + "\n")
    return path


def set_role_model(
    cfg: Config,
    role: str,
    provider: str,
    model_id: str,
    *,
    logger: Logger | None = None,
) -> Config:
    """Return a copy of *cfg* with *role* bound to ``provider/model_id``."""
    log = logger or NullLogger()
    if role not in ROLE_NAMES:
        raise ConfigurationError(f"Unknown role '{role}'. Use one of: {', '.join(ROLE_NAMES)}")
    provider = provider.strip().lower()
    _validate_provider(role, provider)
    if not model_id.strip():
        raise ConfigurationError("Model ID cannot be empty")

    if not is_known_model(provider, model_id):
        log.warn(f"Model '{model_id}' is not in the known list for provider '{provider}'. Ensure it is valid.")
    else:
        info = get_model_info(provider, model_id)
        if info is not None and role not in info.allowed_roles:
            log.warn(f"Model '{model_id}' is not recommended for the '{role}' role.")

    current = cfg.binding(role)
    info = get_model_info(provider, model_id)
    max_tokens = info.max_tokens if info and info.max_tokens else current.max_tokens
    models = dict(cfg.models)
    models[role] = replace(current, provider=provider, model_id=model_id.strip(), max_tokens=max_tokens)
    return Config(models=models, settings=cfg.settings)
