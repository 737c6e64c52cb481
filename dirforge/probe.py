"""
Structure Prober

Looks at an existing tree and reports what it is: which world type and
version it claims (from a metadata descriptor) or appears to be (from
structural heuristics), and which paths already exist.

Detection order:
  1. exact-metadata: a descriptor at the root names both world_type and
     version. Locations are tried in priority order:
     .integrity/project.yaml, .integrity/world.yaml, .integrity/study.yaml,
     .integrity/workspace.yaml, then the legacy project.yaml. The first
     complete one fixes the world type; the version is the highest among
     complete descriptors of that type.
  2. structural-heuristic: StructureDetector finds a matching signature.
  3. unknown: nothing matched. This is a result, not an error.

The walk is bounded by depth, never follows symlinks, and never writes.
A ProjectState is built fresh on every call.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .config import Settings
from .heuristics import KNOWN_WORLD_TYPES, StructureDetector
from .metadata import DESCRIPTOR_LEVELS, Descriptor, descriptor_files, read_descriptor
from .registry import version_key
from .serializable import Serializable

logger = logging.getLogger(__name__)


class Confidence(Enum):
    EXACT = "exact-metadata"
    HEURISTIC = "structural-heuristic"
    UNKNOWN = "unknown"


@dataclass
class ProjectState(Serializable):
    """Snapshot of an existing (or absent) tree."""
    root_path: str
    root_exists: bool = False
    root_is_dir: bool = False
    declared_world_type: str | None = None
    declared_version: str | None = None
    detection_confidence: Confidence = Confidence.UNKNOWN
    existing_paths: frozenset = frozenset()        # POSIX paths relative to root
    directories: frozenset = frozenset()           # subset of existing_paths
    links: frozenset = frozenset()                 # symlinks, never descended
    descriptor: Descriptor | None = None
    descriptor_path: str | None = None
    root_descriptors: dict = field(default_factory=dict)     # rel -> Descriptor, priority order
    nested_descriptors: dict = field(default_factory=dict)   # level root -> Descriptor
    matched_rules: list = field(default_factory=list)
    depth: int = 0

    @property
    def root(self) -> Path:
        return Path(self.root_path)

    def exists(self, rel: str) -> bool:
        return rel in self.existing_paths

    def is_dir(self, rel: str) -> bool:
        return rel in self.directories

    def is_file(self, rel: str) -> bool:
        return rel in self.existing_paths and rel not in self.directories

    def top_level_entries(self) -> list[str]:
        return sorted(p for p in self.existing_paths if "/" not in p)


def _walk(root: Path, depth: int):
    """Enumerate (rel_path, is_dir, is_link) below root, breadth-first, up to depth levels."""
    pending = [("", 0)]
    while pending:
        rel_dir, level = pending.pop(0)
        if level >= depth:
            continue
        try:
            with os.scandir(root / rel_dir if rel_dir else root) as it:
                entries = sorted(it, key=lambda e: e.name)
        except (PermissionError, NotADirectoryError, FileNotFoundError) as e:
            logger.warning("Cannot list %s: %s", root / rel_dir, e)
            continue
        for entry in entries:
            rel = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
            is_link = entry.is_symlink()
            try:
                is_dir = entry.is_dir(follow_symlinks=True) if is_link else entry.is_dir(follow_symlinks=False)
            except OSError:
                is_dir = False
            yield rel, is_dir, is_link
            if is_dir and not is_link:
                pending.append((rel, level + 1))


def _nested_level_root(rel: str, integrity_dir: str) -> str | None:
    """'a/b/.integrity/project.yaml' -> 'a/b' when it names a descriptor below the root."""
    parts = rel.split("/")
    if len(parts) < 3 or parts[-2] != integrity_dir:
        return None
    if not parts[-1].endswith(".yaml") or parts[-1][:-5] not in DESCRIPTOR_LEVELS:
        return None
    return "/".join(parts[:-2])


def _newest_descriptor(descriptors: dict):
    """(rel, descriptor) with the highest version of the first descriptor's world type.

    An update writes its descriptor at the spec's own path and leaves an
    older one at a higher-priority location untouched.
    """
    if not descriptors:
        return None
    best = next(iter(descriptors.items()))
    for rel, descriptor in descriptors.items():
        if descriptor.world_type != best[1].world_type:
            continue
        if version_key(descriptor.version) > version_key(best[1].version):
            best = (rel, descriptor)
    return best


def probe(root, registry=None, *, depth: int | None = None,
          settings: Settings | None = None, detector: StructureDetector | None = None) -> ProjectState:
    """Inspect ``root`` and report its declared or apparent world type and version."""
    settings = settings or Settings()
    root = Path(root).expanduser().absolute()
    if depth is None:
        depth = registry.max_depth() if registry is not None else settings.default_probe_depth
    depth = max(depth, 2)

    state = ProjectState(root_path=str(root), depth=depth)
    if not root.exists() and not root.is_symlink():
        logger.debug("Probe %s: root does not exist", root)
        return state
    state.root_exists = True
    state.root_is_dir = root.is_dir()
    if not state.root_is_dir:
        logger.warning("Probe %s: root exists but is not a directory", root)
        return state

    existing, directories, links = set(), set(), set()
    for rel, is_dir, is_link in _walk(root, depth):
        existing.add(rel)
        if is_dir:
            directories.add(rel)
        if is_link:
            links.add(rel)
        level_root = _nested_level_root(rel, settings.integrity_dir)
        if level_root and not is_dir and level_root not in state.nested_descriptors:
            nested = read_descriptor(root / rel)
            if nested is not None:
                state.nested_descriptors[level_root] = nested
    state.existing_paths = frozenset(existing)
    state.directories = frozenset(directories)
    state.links = frozenset(links)

    for rel in descriptor_files(settings.integrity_dir):
        path = root / rel
        if path.is_file():
            descriptor = read_descriptor(path)
            if descriptor is not None and descriptor.complete:
                state.root_descriptors[rel] = descriptor

    chosen = _newest_descriptor(state.root_descriptors)
    if chosen is not None:
        rel, descriptor = chosen
        state.descriptor = descriptor
        state.descriptor_path = rel
        state.declared_world_type = descriptor.world_type
        state.declared_version = descriptor.version
        state.detection_confidence = Confidence.EXACT
        logger.debug("Probe %s: %s %s from %s", root, descriptor.world_type, descriptor.version, rel)
        return state

    if detector is None:
        world_types = set(KNOWN_WORLD_TYPES)
        if registry is not None:
            world_types.update(registry.world_types())
        detector = StructureDetector(world_types=sorted(world_types))
    detection = detector.detect(state.existing_paths, root.name, [p.name for p in root.parents])
    state.matched_rules = detection.rules
    if detection.found:
        state.declared_world_type = detection.world_type
        state.declared_version = detection.version
        state.detection_confidence = Confidence.HEURISTIC
    else:
        logger.debug("Probe %s: no descriptor and no structural match", root)
    return state


def find_root(start, settings: Settings | None = None) -> Path | None:
    """Nearest directory at or above ``start`` that carries a descriptor."""
    settings = settings or Settings()
    current = Path(start).expanduser().absolute()
    for candidate in (current, *current.parents):
        if any((candidate / rel).is_file() for rel in descriptor_files(settings.integrity_dir)):
            return candidate
    return None
