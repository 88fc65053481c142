"""Configuration system for appauth using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.appauth] section (project-level)
3. ./appauth.toml (project-level, explicit)
4. ~/.config/appauth/config.toml (user-level, overrides project)
5. File named by APPAUTH_CONFIG_FILE
6. Environment variables (highest priority)

Environment variables use the APPAUTH_ prefix.
Example: APPAUTH_CLIENT_ID, APPAUTH_ISSUER_URL, APPAUTH_HTTP_TIMEOUT_SECONDS
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .exceptions import ConfigurationError
from .log import get_logger


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


def _user_config_dir() -> Path:
    """Per-user configuration directory."""
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "~")).expanduser() / "appauth"
    return Path("~/.config/appauth").expanduser()


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    appauth_toml = Path("appauth.toml")
    if appauth_toml.exists():
        files.append(appauth_toml)

    user_config = _user_config_dir() / "config.toml"
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("APPAUTH_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            get_logger().warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        # Handle pyproject.toml [tool.appauth] section
        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("appauth", {})

        merged.update(data)

    return merged


class _TomlConfigSource(PydanticBaseSettingsSource):
    """Settings source reading the layered TOML files."""

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        """Per-field lookup is not used; values come from ``__call__``."""
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        """Return the known fields found in the TOML layers."""
        data = _load_toml_config()
        return {k: v for k, v in data.items() if k in self.settings_cls.model_fields}


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {"client_secret"}

_REDACTED = "********"


class AuthSettings(BaseSettings):
    """Identity provider and session persistence configuration.

    Environment prefix: APPAUTH_
    Example: APPAUTH_CLIENT_ID=your-client-id
    Example: APPAUTH_ISSUER_URL=https://tenant.example.auth0.com

    TOML section: [tool.appauth]
    """

    model_config = SettingsConfigDict(
        env_prefix="APPAUTH_",
        extra="ignore",
    )

    # Client credentials
    client_id: str = Field(
        default="",
        description="OAuth2 client ID registered with the identity provider",
    )
    client_secret: str = Field(
        default="",
        description="OAuth2 client secret (empty for public clients using PKCE)",
    )
    scopes: str = Field(
        default="openid profile email",
        description="Space-separated OAuth2 scopes to request",
    )

    # Provider endpoints
    issuer_url: str = Field(
        default="",
        description="Provider base URL; fills unset endpoints with conventional paths",
    )
    authorize_url: str = Field(default="", description="Authorization endpoint URL")
    token_url: str = Field(default="", description="Token exchange endpoint URL")
    userinfo_url: str = Field(default="", description="User info endpoint URL")
    revocation_url: str = Field(default="", description="Token revocation endpoint URL")

    # Redirect
    redirect_scheme: str = Field(
        default="appauth",
        description="Custom URL scheme registered for this application",
    )
    redirect_path: str = Field(
        default="auth/callback",
        description="Fixed callback path appended to the redirect scheme",
    )
    callback_host: str = Field(
        default="127.0.0.1",
        description="Bind address of the loopback callback server",
    )
    callback_port: int = Field(
        default=8765,
        ge=0,
        le=65535,
        description="Port of the loopback callback server (0 picks a free port)",
    )

    # Token storage
    token_store_backend: Literal["file", "keyring", "memory"] = Field(
        default="file",
        description="Token storage backend: file, keyring, or memory",
    )
    storage_path: Path = Field(
        default_factory=lambda: _user_config_dir() / "session.json",
        description="JSON file used by the file backend",
    )
    keyring_service: str = Field(
        default="appauth",
        description="Service name used by the keyring backend",
    )
    token_key: str = Field(default="auth_token", description="Store slot for the access token")
    profile_key: str = Field(default="user_data", description="Store slot for the user profile")

    # Network / lifecycle
    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Timeout applied to every identity provider request",
    )
    revoke_on_logout: bool = Field(
        default=True,
        description="Revoke the access token at the provider after logout",
    )
    log_level: str = Field(default="WARNING", description="Level for the appauth logger")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Place the TOML layers below environment variables."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            _TomlConfigSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("redirect_path")
    @classmethod
    def _strip_redirect_path(cls, v: str) -> str:
        """Store the callback path without surrounding slashes."""
        return v.strip("/")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, v: str) -> str:
        """Accept standard logging level names only."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Unknown log level: {v}"
            raise ValueError(msg)
        return level

    @model_validator(mode="after")
    def _fill_endpoints_from_issuer(self) -> AuthSettings:
        """Derive unset endpoint URLs from ``issuer_url``."""
        if self.issuer_url:
            base = self.issuer_url.rstrip("/")
            self.authorize_url = self.authorize_url or f"{base}/authorize"
            self.token_url = self.token_url or f"{base}/oauth/token"
            self.userinfo_url = self.userinfo_url or f"{base}/userinfo"
            self.revocation_url = self.revocation_url or f"{base}/oauth/revoke"
        return self

    @property
    def scope_list(self) -> list[str]:
        """Requested scopes as a list."""
        return [s for s in self.scopes.split() if s]

    @property
    def redirect_uri(self) -> str:
        """Custom-scheme redirect URI, e.g. ``appauth://auth/callback``."""
        return f"{self.redirect_scheme}://{self.redirect_path}"

    def validate_for_login(self) -> None:
        """Check that a login can be attempted with these settings.

        Raises
        ------
        ConfigurationError
            If the client id or a required endpoint is missing.
        """
        missing = [
            name
            for name in ("client_id", "authorize_url", "token_url", "userinfo_url")
            if not getattr(self, name)
        ]
        if missing:
            msg = f"Missing identity provider settings: {', '.join(missing)}"
            raise ConfigurationError(msg)

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# appauth Environment Variables",
            "# Generated by: appauth config --env",
            "",
        ]
        data = self.model_dump(exclude=_SENSITIVE_FIELDS)
        for field_name, field_value in data.items():
            if isinstance(field_value, bool):
                value_str = "true" if field_value else "false"
            else:
                value_str = str(field_value)
            lines.append(f'export APPAUTH_{field_name.upper()}="{value_str}"')
        lines.extend(
            f'export APPAUTH_{name.upper()}="{_REDACTED}"' for name in sorted(_SENSITIVE_FIELDS)
        )
        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["appauth Configuration", "=" * 60]
        data = self.model_dump(exclude=_SENSITIVE_FIELDS)
        for field_name, field_value in data.items():
            value_str = str(field_value)
            if len(value_str) > 50:
                value_str = value_str[:47] + "..."
            lines.append(f"  {field_name:22} = {value_str}")
        lines.extend(f"  {name:22} = {_REDACTED}" for name in sorted(_SENSITIVE_FIELDS))
        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> AuthSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return AuthSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()
