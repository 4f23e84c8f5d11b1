"""Durable configuration document (`<home>/config.json`)."""

import json
from pathlib import Path
from typing import Any, Optional
from loguru import logger
from pydantic import ValidationError

from models.config_state import ConfigState
from utils.errors import ConfigValidationError
from utils.filesystem import Filesystem
from utils.paths import ValetPaths


class ConfigStore:
    """
    Whole-document read/modify/write of the configuration.

    Every mutation reads the file, changes the in-memory ConfigState and
    writes the whole document back atomically.
    """

    def __init__(self, paths: ValetPaths, filesystem: Optional[Filesystem] = None):
        self.paths = paths
        self.files = filesystem or Filesystem()

    @property
    def path(self) -> Path:
        return self.paths.config_file

    def install(self):
        """Create the home directory layout and the base configuration."""
        for directory in (
            self.paths.home,
            self.paths.drivers_dir,
            self.paths.sites_path(),
            self.paths.extensions_dir,
            self.paths.log_dir,
            self.paths.certificates_path(),
        ):
            self.files.ensure_dir(directory)
        self.files.touch(self.paths.log_dir / "nginx-error.log")

        if not self.files.exists(self.path):
            self.save(ConfigState())
            logger.info(f"Created base configuration: {self.path}")

    def uninstall(self):
        """Remove the whole home directory."""
        if self.files.is_dir(self.paths.home):
            self.files.remove_tree(self.paths.home)

    def exists(self) -> bool:
        return self.files.exists(self.path)

    def load(self) -> ConfigState:
        """
        Read and validate the configuration.

        Returns:
            ConfigState; defaults when the file does not exist yet

        Raises:
            ConfigValidationError: malformed JSON, unknown key or bad value
        """
        if not self.files.exists(self.path):
            return ConfigState()

        content = self.files.read_text(self.path)
        try:
            document = json.loads(content) if content.strip() else {}
        except json.JSONDecodeError as e:
            raise ConfigValidationError(f"{self.path} is not valid JSON: {e}") from e
        if not isinstance(document, dict):
            raise ConfigValidationError(f"{self.path} must contain a JSON object")

        try:
            return ConfigState.model_validate(document)
        except ValidationError as e:
            error = e.errors()[0]
            key = ".".join(str(part) for part in error["loc"]) or None
            raise ConfigValidationError(error["msg"], key=key) from e

    def save(self, state: ConfigState):
        content = json.dumps(state.to_document(), indent=4) + "\n"
        self.files.write_text(self.path, content)
        logger.debug(f"Configuration saved: {self.path}")

    def get(self, key: str, default: Any = None) -> Any:
        """Value of a field, by field name or on-disk key (`port`)."""
        state = self.load()
        field = self._field_name(key)
        if field is None:
            return default
        value = getattr(state, field)
        return default if value is None else value

    def update(self, **changes) -> ConfigState:
        """
        Set one or more fields and persist.

        Raises:
            ConfigValidationError: unknown key or invalid value
        """
        state = self.load()
        data = state.model_dump()
        for key, value in changes.items():
            field = self._field_name(key)
            if field is None:
                raise ConfigValidationError("unknown configuration key", key=key)
            data[field] = value
        try:
            new_state = ConfigState.model_validate(data)
        except ValidationError as e:
            error = e.errors()[0]
            key = ".".join(str(part) for part in error["loc"]) or None
            raise ConfigValidationError(error["msg"], key=key) from e
        self.save(new_state)
        logger.info(f"Configuration updated: {', '.join(changes)}")
        return new_state

    def add_path(self, path: str, prepend: bool = False) -> ConfigState:
        """Add a parked directory. An existing entry is moved, never duplicated."""
        state = self.load()
        paths = [p for p in state.paths if p != path]
        if prepend:
            paths.insert(0, path)
        else:
            paths.append(path)
        return self.update(paths=paths)

    def remove_path(self, path: str) -> ConfigState:
        state = self.load()
        return self.update(paths=[p for p in state.paths if p != path])

    def prune(self) -> ConfigState:
        """Drop parked directories that no longer exist."""
        if not self.exists():
            return ConfigState()
        state = self.load()
        kept = [p for p in state.paths if self.files.is_dir(p)]
        if kept == state.paths:
            return state
        logger.info(f"Pruned {len(state.paths) - len(kept)} missing path(s) from configuration")
        return self.update(paths=kept)

    def parse_domain(self, site_name: str) -> str:
        """Append the configured domain unless the name already carries it."""
        domain = self.load().domain
        site_name = site_name.strip().rstrip(".").lower()
        if site_name.endswith(f".{domain}"):
            return site_name
        return f"{site_name}.{domain}"

    def _field_name(self, key: str) -> Optional[str]:
        if key in ConfigState.model_fields:
            return key
        for name, field in ConfigState.model_fields.items():
            if field.alias == key:
                return name
        return None

