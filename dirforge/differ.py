"""
Structure Differ

Computes the additive steps that bring an existing tree (a ProjectState)
up to a WorldSpec. The result depends only on its inputs: no filesystem
access, no clock reads (timestamps come from the spec's variable context).

Step order:
  1. declared directories, in declaration order, each preceded by any
     missing ancestors
  2. required files (after their parent directories)
  3. the integrity directory, its subdirectories, then the descriptor

A path already present in the state never gets a step. A path occupied by
the wrong kind of entry is reported as a conflict and everything below it
is skipped.
"""

import logging
from pathlib import PurePosixPath

from .config import Settings
from .metadata import Descriptor
from .plan import (
    Conflict,
    ConflictKind,
    DescriptorRefresh,
    MigrationPlan,
    MigrationStep,
    StepKind,
)
from .probe import Confidence, ProjectState
from .registry import version_key
from .spec import WorldSpec
from .templates import render_required_file

logger = logging.getLogger(__name__)

PLAN_MODES = ("create", "update")


def _ancestors(path: str) -> list[str]:
    """'a/b/c' -> ['a', 'a/b', 'a/b/c']"""
    parts = PurePosixPath(path).parts
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


def _generator() -> str:
    from . import __version__
    return f"dirforge {__version__}"


class _PlanBuilder:
    def __init__(self, spec: WorldSpec, state: ProjectState, plan: MigrationPlan, settings: Settings):
        self.spec = spec
        self.state = state
        self.plan = plan
        self.settings = settings
        self.planned: set[str] = set()
        self.blocked: set[str] = set()

    def _is_blocked(self, path: str) -> bool:
        return any(a in self.blocked for a in _ancestors(path))

    def _type_conflict(self, path: str, expected: str, actual: str):
        message = f"{path} exists as a {actual} where a {expected} is declared"
        self.plan.add_conflict(Conflict(path=path, kind=ConflictKind.TYPE, message=message,
                                        expected=expected, actual=actual))
        self.plan.add_warning(f"{message}; resolve manually (nothing below it was planned)")
        self.blocked.add(path)

    def ensure_directory(self, path: str, metadata: bool = False) -> bool:
        """Plan ``path`` and any missing ancestors. False if blocked by a conflict."""
        if self._is_blocked(path):
            return False
        for current in _ancestors(path):
            if current in self.planned:
                continue
            if self.state.is_dir(current):
                if current in self.state.links and current != path:
                    message = f"{current} is a symbolic link; paths below it were not planned"
                    self.plan.add_conflict(Conflict(path=current, kind=ConflictKind.LINK, message=message))
                    self.plan.add_warning(message)
                    self.blocked.add(current)
                    return False
                continue
            if self.state.exists(current):
                self._type_conflict(current, "directory", "file")
                return False
            self.plan.add_step(MigrationStep(
                kind=StepKind.CREATE_DIRECTORY, path=current,
                mode=self.settings.metadata_dir_mode if metadata else self.settings.dir_mode,
                metadata=metadata,
            ))
            self.planned.add(current)
        return True

    def ensure_file(self, required) -> None:
        parent = str(PurePosixPath(required.path).parent)
        if parent != "." and not self.ensure_directory(parent):
            return
        if self._is_blocked(required.path) or required.path in self.planned:
            return
        if self.state.is_dir(required.path):
            self._type_conflict(required.path, "file", "directory")
            return
        if self.state.exists(required.path):
            return
        variables = self.spec.variables
        if "PROJECT_NAME" not in variables.values:
            variables = variables.with_values(PROJECT_NAME=self.state.root.name)
        self.plan.add_step(MigrationStep(
            kind=StepKind.CREATE_FILE,
            path=required.path,
            template=required.template if required.content is None else None,
            content=render_required_file(required, variables, self.spec.description),
            mode=self.settings.file_mode,
        ))
        self.planned.add(required.path)

    def ensure_metadata(self) -> None:
        integrity = self.spec.integrity
        file_mode = self.settings.metadata_file_mode
        for path in integrity.paths():
            if not self.ensure_directory(path, metadata=True):
                return
        path = integrity.descriptor_path
        if self.state.is_dir(path):
            self._type_conflict(path, "file", "directory")
            return
        stamp = self.spec.variables.values.get("DATE")
        if not self.state.exists(path):
            self.plan.descriptor = Descriptor(
                world_type=self.spec.world_type,
                version=self.spec.spec_version,
                level=integrity.level,
                name=self.state.root.name,
                created=stamp,
                updated=stamp,
                source=self.spec.source,
                generator=_generator(),
            )
            self.plan.add_step(MigrationStep(
                kind=StepKind.WRITE_METADATA, path=path, level=integrity.level, mode=file_mode,
            ))
            return

        current = self.state.root_descriptors.get(path)
        if current is None:
            return
        if current.world_type != self.spec.world_type:
            return
        if version_key(current.version) < version_key(self.spec.spec_version):
            self.plan.descriptor_refresh = DescriptorRefresh(
                path=path, level=integrity.level, directory=integrity.directory,
                from_version=current.version, to_version=self.spec.spec_version,
            )


def _check_recognition(plan: MigrationPlan, spec: WorldSpec, state: ProjectState, registry, mode: str):
    """Attach manual-migration warnings for combinations no rule covers."""
    declared_type, declared_version = state.declared_world_type, state.declared_version

    if state.detection_confidence == Confidence.UNKNOWN:
        if mode == "update" or state.existing_paths:
            plan.add_warning(
                f"Could not detect the world type or version of {state.root_path}; "
                f"review the planned {spec.world_type} {spec.spec_version} paths before applying"
            )
        return

    if declared_type and declared_type != spec.world_type:
        plan.add_warning(
            f"Tree declares {declared_type} but the target is {spec.world_type}; "
            f"no automated migration between world types"
        )
        return

    if declared_version is None:
        plan.add_warning(
            f"Version of {declared_type} tree could not be determined; "
            f"manual review required before migrating to {spec.spec_version}"
        )
        return

    if version_key(declared_version) > version_key(spec.spec_version):
        plan.add_warning(
            f"Tree version {declared_version} is newer than target {spec.spec_version}; "
            f"downgrades are not supported"
        )
        return

    if version_key(declared_version) == version_key(spec.spec_version):
        return

    if registry is None:
        plan.add_warning(
            f"No migration registry supplied; {spec.world_type} {declared_version} -> "
            f"{spec.spec_version} is unverified"
        )
        return

    chain = registry.migration_path(spec.world_type, declared_version, spec.spec_version)
    if chain is None:
        plan.add_warning(
            f"No migration rule for {spec.world_type} {declared_version} -> {spec.spec_version}; "
            f"manual migration required"
        )
    else:
        logger.debug(
            "Migration chain for %s: %s", spec.world_type,
            " -> ".join([declared_version] + [r.to_version for r in chain]),
        )


def diff(spec: WorldSpec, state: ProjectState, registry=None, *, mode: str = "update",
         settings: Settings | None = None) -> MigrationPlan:
    """Compute the additive plan that brings ``state`` up to ``spec``."""
    if mode not in PLAN_MODES:
        raise ValueError(f"Invalid plan mode {mode!r} (expected one of {', '.join(PLAN_MODES)})")
    settings = settings or Settings()

    plan = MigrationPlan(
        root=state.root_path,
        mode=mode,
        world_type=spec.world_type,
        spec_version=spec.spec_version,
        from_version=state.declared_version,
        confidence=state.detection_confidence.value,
        stamped_at=spec.variables.values.get("DATE"),
    )

    if state.root_exists and not state.root_is_dir:
        message = f"{state.root_path} exists and is not a directory"
        plan.add_conflict(Conflict(path=".", kind=ConflictKind.TYPE, message=message,
                                   expected="directory", actual="file"))
        plan.add_warning(f"{message}; nothing can be planned")
        return plan

    _check_recognition(plan, spec, state, registry, mode)

    builder = _PlanBuilder(spec, state, plan, settings)
    for path in spec.directory_paths():
        builder.ensure_directory(path)
    for required in spec.required_files:
        builder.ensure_file(required)
    if spec.integrity is not None:
        builder.ensure_metadata()

    if mode == "create":
        declared = spec.top_level_names()
        for entry in state.top_level_entries():
            if entry not in declared:
                plan.add_conflict(Conflict(
                    path=entry, kind=ConflictKind.FOREIGN,
                    message=f"{entry} is not part of {spec.world_type}",
                ))

    for message in plan.manual_warnings:
        logger.warning("Manual migration: %s", message)
    logger.debug(
        "Plan for %s (%s): %d steps, %d conflicts, %d warnings",
        state.root_path, mode, len(plan.steps), len(plan.conflicts), len(plan.manual_warnings),
    )
    return plan
