"""
Settings

Process-level knobs for the engine: where user world specs live, which
permission bits created paths receive, and how old an advisory lock may get
before it is considered abandoned.

Settings are read from a JSON file ($DIRFORGE_CONFIG, default
~/.config/dirforge/config.json) and then overridden by environment
variables. Every field has a default, so a missing file is fine.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .serializable import Serializable

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/dirforge/config.json")


@dataclass
class Settings(Serializable):
    """Engine configuration."""
    _skip_none = True

    config_dir: str | None = None       # extra directory searched for *.world.yaml
    user: str | None = None             # overrides the ${USER} substitution
    integrity_dir: str = ".integrity"
    dir_mode: int = 0o755
    file_mode: int = 0o644
    metadata_dir_mode: int = 0o700
    metadata_file_mode: int = 0o600
    lock_max_age: float = 3600 * 4
    lock_dir: str | None = "~/.cache/dirforge/locks"   # used when a root's parent is read-only
    default_probe_depth: int = 4

    def validate(self) -> "Settings":
        for name in ("dir_mode", "file_mode", "metadata_dir_mode", "metadata_file_mode"):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value <= 0o7777:
                raise ValueError(f"Invalid config: {name} must be a permission mode, got {value!r}")
        if self.lock_max_age < 0:
            raise ValueError(
                f"Invalid config: lock_max_age must be >= 0, got {self.lock_max_age}\n"
                f"  Use 0 to treat every existing lock as stale"
            )
        if self.default_probe_depth < 1:
            raise ValueError(
                f"Invalid config: default_probe_depth must be >= 1, got {self.default_probe_depth}"
            )
        if not self.integrity_dir or "/" in self.integrity_dir or ".." in self.integrity_dir:
            raise ValueError(f"Invalid config: integrity_dir must be a plain name, got {self.integrity_dir!r}")
        return self

    @classmethod
    def load(cls, path: Path | None = None, environ=None) -> "Settings":
        """Read settings from a JSON file and the environment."""
        env = os.environ if environ is None else environ
        if path is None:
            path = Path(env.get("DIRFORGE_CONFIG") or DEFAULT_CONFIG_PATH).expanduser()

        data = {}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid config file {path}: {e}") from e
            if not isinstance(data, dict):
                raise ValueError(f"Invalid config file {path}: expected a JSON object")
            for key in ("dir_mode", "file_mode", "metadata_dir_mode", "metadata_file_mode"):
                if isinstance(data.get(key), str):
                    data[key] = int(data[key], 8)

        settings = cls.from_dict(data)

        if env.get("DIRFORGE_CONFIG_DIR"):
            settings.config_dir = env["DIRFORGE_CONFIG_DIR"]
        if env.get("DIRFORGE_USER"):
            settings.user = env["DIRFORGE_USER"]
        if env.get("DIRFORGE_LOCK_DIR"):
            settings.lock_dir = env["DIRFORGE_LOCK_DIR"]
        if env.get("DIRFORGE_LOCK_MAX_AGE"):
            try:
                settings.lock_max_age = float(env["DIRFORGE_LOCK_MAX_AGE"])
            except ValueError:
                raise ValueError(
                    f"Invalid DIRFORGE_LOCK_MAX_AGE: {env['DIRFORGE_LOCK_MAX_AGE']!r}"
                ) from None

        logger.debug("Loaded settings from %s", path)
        return settings.validate()

    def metadata_modes(self, restrictive: bool = True) -> tuple[int, int]:
        """(directory mode, file mode) for descriptor paths."""
        if restrictive:
            return self.metadata_dir_mode, self.metadata_file_mode
        return self.dir_mode, self.file_mode
