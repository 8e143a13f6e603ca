"""Runtime configuration and logging setup.

Settings resolve in order: explicit arguments (CLI options), environment
variables, ``settings.json`` in the home directory, then defaults.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .constants import DB_FILENAME, LOG_FILENAME, SETTINGS_FILENAME
from .errors import ValidationError

logger = logging.getLogger(__name__)

ENV_HOME = "GRAPH_TUTOR_HOME"
ENV_VAULT = "GRAPH_TUTOR_VAULT_DIR"
ENV_LOG_LEVEL = "GRAPH_TUTOR_LOG_LEVEL"
ENV_ACTOR = "GRAPH_TUTOR_ACTOR"

DEFAULT_HOME = Path.home() / ".graph-tutor"


class Settings(BaseModel):
    home_dir: Path = DEFAULT_HOME
    vault_dir: Path | None = None
    log_level: str = "INFO"
    actor: str = Field(default="cli", min_length=1)

    @property
    def vault_path(self) -> Path:
        return self.vault_dir or self.home_dir / "vault"

    @property
    def db_path(self) -> Path:
        return self.home_dir / DB_FILENAME

    @property
    def log_file(self) -> Path:
        return self.home_dir / LOG_FILENAME


def _read_settings_file(home_dir: Path) -> dict:
    path = home_dir / SETTINGS_FILENAME
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid settings file {path}: {e}", path=str(path)) from e
    if not isinstance(data, dict):
        raise ValidationError(f"Settings file {path} must contain a JSON object", path=str(path))
    return data


def load_settings(
    home_dir: Path | None = None,
    vault_dir: Path | None = None,
    log_level: str | None = None,
    actor: str | None = None,
) -> Settings:
    """Build Settings from arguments, environment and the settings file."""
    env = os.environ
    home = Path(home_dir or env.get(ENV_HOME) or DEFAULT_HOME).expanduser()

    values = {k: v for k, v in _read_settings_file(home).items() if k != "home_dir"}
    overrides = {
        "vault_dir": vault_dir or env.get(ENV_VAULT),
        "log_level": log_level or env.get(ENV_LOG_LEVEL),
        "actor": actor or env.get(ENV_ACTOR),
    }
    values.update({k: v for k, v in overrides.items() if v})

    try:
        settings = Settings(home_dir=home, **values)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid settings: {e}") from e
    if settings.vault_dir is not None:
        settings.vault_dir = settings.vault_dir.expanduser()
    return settings


PACKAGE_LOGGER = "graph_tutor"


def configure_logging(settings: Settings, stream=None) -> None:
    """Send package logs to ``<home>/graph-tutor.log``; warnings also to stderr.

    Handlers from an earlier call are replaced, not stacked.
    """
    settings.home_dir.mkdir(parents=True, exist_ok=True)
    reset_logging()

    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(logging.WARNING)
    handlers = [logging.FileHandler(settings.log_file), console_handler]
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
    package_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))


def reset_logging() -> None:
    """Detach and close handlers installed by configure_logging."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
