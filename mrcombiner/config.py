"""Configuration management for the combiner.

Settings come from the process environment, optionally layered over a
YAML file (``MRCOMBINER_CONFIG`` or an explicit path) whose keys are the
lower-cased environment names::

    trigger_message: "/combine"
    trigger_tag: ready
    target_branch: combined

Environment variables always win over the file.  Validation is eager:
``load_settings()`` raises ``ConfigurationError`` listing every missing
or malformed key, so a bad deployment fails at startup rather than on
the first webhook.
"""

import os
from pathlib import Path
from typing import Literal, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from mrcombiner.errors import ConfigurationError
from mrcombiner.paths import DEFAULT_WORKSPACE_ROOT

CONFIG_ENV = "MRCOMBINER_CONFIG"

REQUIRED_KEYS = ("TRIGGER_MESSAGE", "TRIGGER_TAG", "TARGET_BRANCH", "GITLAB_TOKEN")

# env name -> Settings field
_ENV_FIELDS = {
    "TRIGGER_MESSAGE": "trigger_message",
    "TRIGGER_TAG": "trigger_tag",
    "TARGET_BRANCH": "target_branch",
    "GITLAB_TOKEN": "gitlab_token",
    "GITLAB_URL": "gitlab_url",
    "GIT_USER": "git_user",
    "GIT_EMAIL": "git_email",
    "SECRET_TOKEN": "secret_token",
    "PORT": "port",
    "WORKSPACE_ROOT": "workspace_root",
    "GIT_TIMEOUT": "git_timeout",
    "HTTP_TIMEOUT": "http_timeout",
    "MAX_CONCURRENT_RUNS": "max_concurrent_runs",
    "CLONE_PROTOCOL": "clone_protocol",
    "LOG_LEVEL": "log_level",
}


class GitIdentity(BaseModel):
    """Author/committer used for merge commits on the integration branch."""

    name: str
    email: str

    def config_args(self) -> list[str]:
        """``-c`` flags that apply this identity to a single git command."""
        return ["-c", f"user.name={self.name}", "-c", f"user.email={self.email}"]


class Settings(BaseModel):
    """Process-wide configuration, built once at startup."""

    trigger_message: str
    trigger_tag: str
    target_branch: str
    gitlab_token: str
    gitlab_url: str = "https://gitlab.com"
    git_user: str = "vcs"
    git_email: str = "vcs@example.com"
    secret_token: str | None = None
    port: int = 8080
    workspace_root: Path = DEFAULT_WORKSPACE_ROOT
    git_timeout: float = Field(default=300.0, gt=0)
    http_timeout: float = Field(default=30.0, gt=0)
    max_concurrent_runs: int = Field(default=8, ge=1)
    clone_protocol: Literal["ssh", "http"] = "ssh"
    log_level: str = "INFO"

    @field_validator("gitlab_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("secret_token")
    @classmethod
    def _blank_secret_is_unset(cls, v: str | None) -> str | None:
        return v or None

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def git_identity(self) -> GitIdentity:
        return GitIdentity(name=self.git_user, email=self.git_email)

    @property
    def api_base_url(self) -> str:
        return f"{self.gitlab_url}/api/v4"

    def redacted(self) -> dict:
        """Settings as a plain dict with secrets masked (for display)."""
        data = self.model_dump(mode="json")
        data["gitlab_token"] = "***"
        if data.get("secret_token"):
            data["secret_token"] = "***"
        return data


def _read_file(path: Path) -> dict:
    """Read a YAML config file, returning empty dict if it is empty."""
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Config file {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return {str(k).lower(): v for k, v in data.items()}


def load_settings(
    environ: Mapping[str, str] | None = None,
    config_file: Path | None = None,
) -> Settings:
    """Build and validate ``Settings`` from the environment (and YAML file).

    Raises:
        ConfigurationError: If a required value is missing/blank or any
            value fails validation.
    """
    env = os.environ if environ is None else environ

    if config_file is None and env.get(CONFIG_ENV):
        config_file = Path(env[CONFIG_ENV])
    values: dict = _read_file(config_file) if config_file is not None else {}

    for key, field in _ENV_FIELDS.items():
        if key in env:
            values[field] = env[key]

    missing = [
        key for key in REQUIRED_KEYS
        if not str(values.get(_ENV_FIELDS[key]) or "").strip()
    ]
    if missing:
        raise ConfigurationError(
            f"Missing required env variable(s): {', '.join(missing)}"
        )

    try:
        return Settings(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']).upper()}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from exc
