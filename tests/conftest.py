"""
Shared pytest fixtures.

Every test works under tmp_path. Time and user identity are pinned so that
rendered files and descriptors are reproducible.
"""

import hashlib
import os
from datetime import datetime, timezone

import pytest

from dirforge.config import Settings
from dirforge.registry import SpecRegistry
from dirforge.spec import parse

FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def settings():
    return Settings(user="tester")


@pytest.fixture
def make_spec(settings):
    """Build a WorldSpec from keyword overrides of a minimal document."""
    def _make(parents=("P",), subdirectories=None, version="1.0.0", world_type="TEST_WORLD",
              context=None, **extra):
        document = {
            "worldType": world_type,
            "specVersion": version,
            "parentDirectories": list(parents),
        }
        if subdirectories is not None:
            document["subdirectories"] = subdirectories
        document.update(extra)
        return parse(document, context, settings=settings, now=FIXED_NOW)
    return _make


@pytest.fixture(scope="session")
def builtin_registry():
    return SpecRegistry.builtin(Settings(user="tester"))


def write_descriptor(root, world_type, version, rel=".integrity/project.yaml", quoted=True):
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    if quoted:
        path.write_text(f'version: "{version}"\nworld_type: "{world_type}"\n')
    else:
        path.write_text(f"version: {version}\nworld_type: {world_type}\n")
    return path


def make_tree(root, *paths, files=()):
    """Create directories (and empty files) below root."""
    root.mkdir(parents=True, exist_ok=True)
    for p in paths:
        (root / p).mkdir(parents=True, exist_ok=True)
    for f in files:
        (root / f).parent.mkdir(parents=True, exist_ok=True)
        (root / f).write_text("user data\n")
    return root


def tree_checksum(root) -> str:
    """Hash of every path, kind, mode and file body below root."""
    h = hashlib.sha256()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        rel_dir = os.path.relpath(dirpath, root)
        h.update(f"D {rel_dir} {oct(os.stat(dirpath).st_mode)}\n".encode())
        for name in sorted(filenames):
            full = os.path.join(dirpath, name)
            h.update(f"F {rel_dir}/{name} {oct(os.stat(full).st_mode)}\n".encode())
            with open(full, "rb") as f:
                h.update(f.read())
    return h.hexdigest()


def list_tree(root) -> set:
    result = set()
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            result.add(os.path.relpath(os.path.join(dirpath, name), root).replace(os.sep, "/"))
    return result
