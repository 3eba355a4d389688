"""Map logical roles to provider bindings and credentials."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path

from dotenv import dotenv_values

from taskweave.config import Config, RoleBinding
from taskweave.errors import ConfigurationError, MissingCredentialError
from taskweave.log import Logger, NullLogger
from taskweave.providers.registry import provider_class

_PLACEHOLDER = re.compile(r"^YOUR_.*_HERE$|^<.*>$", re.IGNORECASE)


def _usable(value: str | None) -> bool:
    if value is None:
        return False
    value = value.strip()
    return bool(value) and not _PLACEHOLDER.match(value)


class RoleResolver:
    """Resolve ``main`` / ``research`` / ``fallback`` into concrete calls.

    Credentials are looked up in the caller's session env, then the process
    environment, then ``<project_root>/.env``.
    """

    def __init__(
        self,
        config: Config,
        session_env: Mapping[str, str] | None = None,
        project_root: Path | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config
        self.session_env = dict(session_env or {})
        self.project_root = project_root
        self.logger = logger or NullLogger()
        self._dotenv: dict[str, str | None] | None = None

    def resolve(self, role: str) -> RoleBinding:
        binding = self.config.binding(role)
        if not binding.provider:
            raise ConfigurationError(f"No provider configured for role '{role}'", {"role": role})
        if not binding.model_id:
            raise ConfigurationError(
                f"No model configured for role '{role}' (provider {binding.provider})",
                {"role": role, "provider": binding.provider},
            )
        return RoleBinding(
            provider=binding.provider,
            model_id=binding.model_id,
            max_tokens=binding.max_tokens,
            temperature=binding.temperature,
            base_url=self.config.base_url_for(role),
        )

    def _dotenv_values(self) -> dict[str, str | None]:
        if self._dotenv is None:
            self._dotenv = {}
            if self.project_root is not None:
                env_file = self.project_root / ".env"
                if env_file.is_file():
                    self._dotenv = dict(dotenv_values(env_file))
        return self._dotenv

    def lookup(self, name: str) -> str | None:
        """Return the first usable value of env var *name*, or None."""
        for source, value in (
            ("session", self.session_env.get(name)),
            ("environment", os.environ.get(name)),
            (".env", self._dotenv_values().get(name)),
        ):
            if _usable(value):
                self.logger.debug(f"Resolved {name} from {source}")
                return value.strip()  # type: ignore[union-attr]
        return None

    def resolve_credential(self, provider: str) -> str | None:
        cls = provider_class(provider)
        if not cls.requires_api_key or cls.env_var is None:
            if cls.env_var:
                return self.lookup(cls.env_var)
            return None
        key = self.lookup(cls.env_var)
        if key is None:
            raise MissingCredentialError(
                f"Required API key {cls.env_var} for provider '{provider}' is not set "
                "in the session, the environment or the project .env file.",
                provider,
                cls.env_var,
            )
        return key

    def is_api_key_set(self, provider: str) -> bool:
        try:
            self.resolve_credential(provider)
        except MissingCredentialError:
            return False
        return True
