"""
Metadata descriptors

Every scaffolded level (workspace, world, project, study) may carry a small
YAML descriptor under its integrity directory, e.g.
``<root>/.integrity/project.yaml``:

    world_type: "RESEARCH_WORLD"
    version: "1.0.22"
    level: "project"
    name: "thermal_study"
    created: "2026-01-05T09:12:44Z"
    updated: "2026-01-05T09:12:44Z"
    source: "research"
    generator: "dirforge 0.3.0"

The prober reads these back to find out what a tree is. Reading is
tolerant: legacy key names are accepted and a document that YAML cannot
parse falls back to a line scan. Writing is strict: the file is replaced
atomically and gets restrictive permissions unless told otherwise.
"""

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path

import yaml

from .config import Settings
from .errors import WriteError
from .serializable import Serializable

logger = logging.getLogger(__name__)

DESCRIPTOR_LEVELS = ("workspace", "world", "project", "study")

# Probe order at a root; first readable one wins.
DESCRIPTOR_PRIORITY = ("project", "world", "study", "workspace")
LEGACY_DESCRIPTOR = "project.yaml"

_FIELD_ALIASES = {
    "version": ("version", "constitution_version"),
    "world_type": ("world_type", "worldType", "type"),
}

_FIELD_ORDER = ("world_type", "version", "level", "name", "created", "updated", "source", "generator")


def descriptor_files(integrity_dir: str = ".integrity") -> tuple[str, ...]:
    """Root-relative descriptor locations in probe priority order."""
    return tuple(f"{integrity_dir}/{level}.yaml" for level in DESCRIPTOR_PRIORITY) + (LEGACY_DESCRIPTOR,)


@dataclass
class Descriptor(Serializable):
    """Contents of one metadata descriptor."""
    _skip_none = True

    world_type: str | None = None
    version: str | None = None
    level: str | None = None
    name: str | None = None
    created: str | None = None
    updated: str | None = None
    source: str | None = None
    generator: str | None = None

    @property
    def complete(self) -> bool:
        """Both identifying fields are present."""
        return bool(self.world_type) and bool(self.version)


# ── Reading ───────────────────────────────────────────────────


def _scan_lines(text: str) -> dict:
    """Fallback for documents YAML refuses: pick ``key: value`` lines."""
    data = {}
    for line in text.splitlines():
        m = re.match(r"^([A-Za-z_][A-Za-z0-9_]*)\s*:\s*(.*?)\s*$", line)
        if not m:
            continue
        value = m.group(2)
        if "#" in value and not value.startswith(("'", '"')):
            value = value.split("#", 1)[0].rstrip()
        data.setdefault(m.group(1), value.strip("'\""))
    return data


def parse_descriptor(text: str) -> Descriptor:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError:
        data = None
    if not isinstance(data, dict):
        data = _scan_lines(text)

    fields = {}
    for field_name in _FIELD_ORDER:
        for key in _FIELD_ALIASES.get(field_name, (field_name,)):
            value = data.get(key)
            if value is not None and str(value).strip():
                fields[field_name] = str(value).strip()
                break
    return Descriptor(**fields)


def read_descriptor(path: Path) -> Descriptor | None:
    """Read a descriptor file. Returns None when it is missing or unreadable."""
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning("Cannot read descriptor %s: %s", path, e)
        return None
    descriptor = parse_descriptor(text)
    if not descriptor.complete:
        logger.warning("Descriptor %s lacks world_type or version", path)
    return descriptor


def render_descriptor(descriptor: Descriptor) -> str:
    """Serialize with every value as a double-quoted scalar, in a fixed order."""
    data = descriptor.to_dict()
    lines = [f"{key}: {json.dumps(str(data[key]))}" for key in _FIELD_ORDER if key in data]
    return "\n".join(lines) + "\n"


# ── Writing ───────────────────────────────────────────────────


def _atomic_write(path: Path, content: str, mode: int):
    """
    Write content to a file atomically via write-to-temp + rename.

    The temp file gets its final permissions before the rename, so the
    descriptor is never visible with looser bits.
    """
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class MetadataWriter:
    """Writes descriptors under a root's integrity directory."""

    def __init__(self, settings: Settings | None = None, restrictive: bool = True):
        self.settings = settings or Settings()
        self.restrictive = restrictive

    @property
    def modes(self) -> tuple[int, int]:
        return self.settings.metadata_modes(self.restrictive)

    def descriptor_path(self, root: Path, level: str, directory: str | None = None) -> Path:
        if level not in DESCRIPTOR_LEVELS:
            raise ValueError(
                f"Invalid descriptor level {level!r} (expected one of {', '.join(DESCRIPTOR_LEVELS)})"
            )
        return Path(root) / (directory or self.settings.integrity_dir) / f"{level}.yaml"

    def write(self, root: Path, level: str, descriptor: Descriptor,
              directory: str | None = None) -> Path:
        """Atomically write the descriptor for ``level`` at ``root``."""
        path = self.descriptor_path(root, level, directory)
        dir_mode, file_mode = self.modes
        if descriptor.level is None:
            descriptor = replace(descriptor, level=level)
        made_parent = False
        try:
            if not path.parent.is_dir():
                path.parent.mkdir(mode=dir_mode)
                made_parent = True
                os.chmod(path.parent, dir_mode)
            _atomic_write(path, render_descriptor(descriptor), file_mode)
        except OSError as e:
            if made_parent:
                try:
                    path.parent.rmdir()
                except OSError as cleanup:
                    logger.warning("Cannot remove %s after failed write: %s", path.parent, cleanup)
            raise WriteError(f"Cannot write descriptor {path}: {e}", path=path) from e
        logger.debug("Wrote %s descriptor %s (%s %s)", level, path, descriptor.world_type, descriptor.version)
        return path

    def refresh(self, root: Path, level: str, version: str, updated: str,
                directory: str | None = None, **changes) -> Path:
        """Re-stamp an existing descriptor with a new version, keeping ``created``."""
        path = self.descriptor_path(root, level, directory)
        current = read_descriptor(path)
        if current is None:
            raise WriteError(f"No descriptor to refresh at {path}", path=path)
        changes = {k: v for k, v in changes.items() if v is not None}
        refreshed = replace(current, version=version, updated=updated, **changes)
        if refreshed.created is None:
            refreshed = replace(refreshed, created=updated)
        return self.write(root, level, refreshed, directory)
