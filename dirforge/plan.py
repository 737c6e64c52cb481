"""
Migration plans

A MigrationPlan is the output of the differ and the input of the executor:
an ordered list of additive steps plus everything a human should know
before applying it (manual-migration notices and conflicts). There is no
step kind that removes or overwrites a path.
"""

from dataclasses import dataclass, field
from enum import Enum

from .metadata import Descriptor
from .serializable import Serializable


class StepKind(Enum):
    CREATE_DIRECTORY = "CreateDirectory"
    CREATE_FILE = "CreateFile"
    WRITE_METADATA = "WriteMetadata"


class ConflictKind(Enum):
    FOREIGN = "foreign"     # root entry the spec does not declare (create mode)
    TYPE = "type"           # file where a directory is declared, or the reverse
    LINK = "link"           # declared path is a symlink; not descended


@dataclass(frozen=True)
class MigrationStep(Serializable):
    _skip_none = True

    kind: StepKind
    path: str                       # relative to the plan root, POSIX separators
    template: str | None = None
    content: str | None = None      # rendered file body for CreateFile
    mode: int | None = None
    level: str | None = None        # descriptor level for WriteMetadata
    metadata: bool = False          # part of the integrity directory

    @property
    def is_directory(self) -> bool:
        return self.kind == StepKind.CREATE_DIRECTORY

    def describe(self) -> str:
        return f"ADD {self.path}/" if self.is_directory else f"ADD {self.path}"


@dataclass(frozen=True)
class Conflict(Serializable):
    _skip_none = True

    path: str
    kind: ConflictKind
    message: str
    expected: str | None = None
    actual: str | None = None


@dataclass(frozen=True)
class DescriptorRefresh(Serializable):
    """A stale root descriptor to be re-stamped with the target version."""
    path: str
    level: str
    directory: str
    from_version: str
    to_version: str


@dataclass
class MigrationPlan(Serializable):
    _skip_none = True

    root: str
    mode: str = "update"
    world_type: str | None = None
    spec_version: str | None = None
    from_version: str | None = None
    confidence: str | None = None
    steps: list = field(default_factory=list)
    manual_warnings: list = field(default_factory=list)
    conflicts: list = field(default_factory=list)
    descriptor: Descriptor | None = None
    descriptor_refresh: DescriptorRefresh | None = None
    stamped_at: str | None = None

    def add_step(self, step: MigrationStep):
        self.steps.append(step)

    def add_warning(self, message: str):
        if message not in self.manual_warnings:
            self.manual_warnings.append(message)

    def add_conflict(self, conflict: Conflict):
        if all(c.path != conflict.path for c in self.conflicts):
            self.conflicts.append(conflict)

    def is_empty(self) -> bool:
        return not self.steps and self.descriptor_refresh is None

    def directories(self) -> list[str]:
        return [s.path for s in self.steps if s.kind == StepKind.CREATE_DIRECTORY]

    def files(self) -> list[str]:
        return [s.path for s in self.steps if s.kind != StepKind.CREATE_DIRECTORY]

    def foreign_conflicts(self) -> list[Conflict]:
        return [c for c in self.conflicts if c.kind == ConflictKind.FOREIGN]

    def to_report(self, dry_run: bool = True) -> dict:
        """JSON-ready summary (camelCase keys)."""
        report = {
            "root": self.root,
            "mode": self.mode,
            "worldType": self.world_type,
            "specVersion": self.spec_version,
            "fromVersion": self.from_version,
            "confidence": self.confidence,
            "dryRun": dry_run,
            "directories": self.directories(),
            "files": self.files(),
            "steps": [{"kind": s.kind.value, "path": s.path} for s in self.steps],
            "manualWarnings": list(self.manual_warnings),
            "conflicts": [c.to_dict() for c in self.conflicts],
        }
        if self.descriptor_refresh is not None:
            report["descriptorRefresh"] = self.descriptor_refresh.to_dict()
        return report

    def format(self) -> str:
        """Human-readable listing, one ``ADD`` line per step."""
        lines = [s.describe() for s in self.steps]
        if self.descriptor_refresh is not None:
            r = self.descriptor_refresh
            lines.append(f"UPDATE {r.path} ({r.from_version} -> {r.to_version})")
        for c in self.conflicts:
            lines.append(f"CONFLICT {c.path}: {c.message}")
        for w in self.manual_warnings:
            lines.append(f"MANUAL {w}")
        if not lines:
            lines.append("Nothing to do")
        return "\n".join(lines)
