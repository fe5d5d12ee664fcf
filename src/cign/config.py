"""TOML configuration persistence."""

from __future__ import annotations

import logging
import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import tomli_w

from .core import CustomEntry, RepoEntry, expand_path
from .exceptions import CignError, PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.cign.toml"
DEFAULT_REFRESH_CMD = "git fetch --all --prune"


@dataclass
class Config:
    """Tracked repositories, custom entries and the shared refresh command."""

    git: set[str] = field(default_factory=set)
    custom: list[CustomEntry] = field(default_factory=list)
    refresh_cmd: str = DEFAULT_REFRESH_CMD

    @property
    def repo_paths(self) -> list[str]:
        """Repository paths in lexicographic order."""
        return sorted(self.git)

    def repo_entries(self) -> list[RepoEntry]:
        return [RepoEntry(path) for path in self.repo_paths]

    def entries(self) -> list[RepoEntry | CustomEntry]:
        return [*self.repo_entries(), *self.custom]

    def custom_names(self) -> list[str]:
        return [entry.name for entry in self.custom]

    def find_custom(self, name: str) -> CustomEntry | None:
        for entry in self.custom:
            if entry.name == name:
                return entry
        return None

    def add_custom(self, entry: CustomEntry) -> None:
        if self.find_custom(entry.name) is not None:
            raise CignError(f"A custom entry named {entry.name} already exists")
        self.custom.append(entry)

    def remove_custom(self, name: str) -> CustomEntry:
        entry = self.find_custom(name)
        if entry is None:
            raise CignError(f"No custom entry named {name} in config")
        self.custom = [e for e in self.custom if e.name != name]
        return entry

    def to_dict(self) -> dict:
        return {
            "git": self.repo_paths,
            "refresh_cmd": self.refresh_cmd,
            "custom": [entry.to_dict() for entry in self.custom],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Config:
        git = data.get("git", [])
        if not isinstance(git, list) or not all(isinstance(p, str) for p in git):
            raise PersistenceError("'git' must be a list of path strings")

        refresh_cmd = data.get("refresh_cmd", DEFAULT_REFRESH_CMD)
        if not isinstance(refresh_cmd, str):
            raise PersistenceError("'refresh_cmd' must be a string")

        raw_custom = data.get("custom", [])
        if not isinstance(raw_custom, list):
            raise PersistenceError("'custom' must be an array of tables")

        config = cls(git=set(git), refresh_cmd=refresh_cmd)
        for item in raw_custom:
            entry = _custom_entry_from_dict(item)
            if config.find_custom(entry.name) is not None:
                raise PersistenceError(f"Duplicate custom entry name {entry.name!r}")
            config.custom.append(entry)
        return config


def _custom_entry_from_dict(item: object) -> CustomEntry:
    if not isinstance(item, dict):
        raise PersistenceError("custom entries must be tables")
    values = {}
    for key in ("name", "path", "check_cmd", "refresh_cmd"):
        value = item.get(key, "true" if key.endswith("_cmd") else None)
        if not isinstance(value, str):
            raise PersistenceError(f"custom entry is missing string field {key!r}")
        values[key] = value
    return CustomEntry(**values)


def resolve_config_path(raw: str | Path) -> Path:
    return Path(expand_path(str(raw)))


def load_config(path: Path) -> Config:
    """Read and validate the configuration at ``path``."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise PersistenceError(f"{path}: could not read config: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise PersistenceError(f"{path}: invalid TOML: {e}") from e

    try:
        config = Config.from_dict(data)
    except PersistenceError as e:
        raise PersistenceError(f"{path}: {e}") from e
    logger.debug("Config: %r", config)
    return config


def save_config(config: Config, path: Path) -> None:
    """Write ``config`` to ``path`` atomically (temporary file, then rename)."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                tomli_w.dump(config.to_dict(), f)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise PersistenceError(f"{path}: could not write config: {e}") from e


def load_or_create_config(path: Path) -> Config:
    """Load the configuration, writing a default one first if it is missing."""
    if not path.exists():
        logger.info("Creating default config at %s", path)
        save_config(Config(), path)
    return load_config(path)
