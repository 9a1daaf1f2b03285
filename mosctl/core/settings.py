"""Explicit configuration value passed to every component at construction."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from mosctl.core.errors import ConfigError

DEFAULT_SERVER = "https://mongoose.cloud"
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    port: str = "serial:///dev/ttyUSB0"
    timeout_s: float = 20.0
    reconnect: bool = False
    verbose: bool = False
    server: str = DEFAULT_SERVER
    user: str = "test"
    password: str = "test"
    arch: str = ""
    build_vars: dict[str, str] = field(default_factory=dict)

    def merged(self, **overrides: Any) -> Settings:
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "build_vars" in changes:
            changes["build_vars"] = {**self.build_vars, **changes["build_vars"]}
        return replace(self, **changes)


def _load_schema_validator() -> Any:
    schema_text = resources.files("mosctl.schemas").joinpath("settings.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def settings_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "mosctl" / "config.yml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read settings file {path}: {exc}") from exc

    try:
        loaded = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Settings file {path} must contain a mapping at root")
    return loaded


def load_settings(path: Path | None = None) -> Settings:
    """Read settings from the YAML file, falling back to defaults if absent."""
    path = path or settings_path()
    if not path.is_file():
        LOGGER.debug("No settings file at %s, using defaults", path)
        return Settings()

    doc = _read_yaml(path)
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        where = ".".join(str(p) for p in exc.path)
        where = f" ({where})" if where else ""
        raise ConfigError(f"Schema validation failed for {path}{where}: {exc.message}") from exc

    known = {f.name for f in fields(Settings)}
    values = {k: v for k, v in doc.items() if k in known}
    if "build_vars" in values:
        values["build_vars"] = {str(k): str(v) for k, v in values["build_vars"].items()}
    return Settings(**values)
