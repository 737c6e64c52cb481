"""
Structural heuristics

When a tree carries no readable descriptor, its world type and version are
guessed from which directories it has. Each StructureRule is a signature:
paths that must be present, paths that must be absent, and the world type
and/or version the signature implies.

Resolution over the satisfied rules:
  - version: the highest version among satisfied rules (first declared
    wins ties)
  - world type: from that winning rule if it names one, otherwise from the
    first satisfied rule that names one, otherwise from the root directory
    name when it equals a known world type
"""

import logging
from dataclasses import dataclass, field

from .registry import version_key

logger = logging.getLogger(__name__)

KNOWN_WORLD_TYPES = (
    "CODING_WORLD",
    "JOURNAL_WORLD",
    "LECTURE_WORLD",
    "LITERATURE_WORLD",
    "OFFICE_WORLD",
    "PRIVATE_WORLD",
    "RESEARCH_WORLD",
)


@dataclass(frozen=True)
class StructureRule:
    """A directory signature implying a world type and/or version."""
    name: str
    required: tuple[str, ...]
    absent: tuple[str, ...] = ()
    world_type: str | None = None
    version: str | None = None

    def matches(self, existing: set | frozenset) -> bool:
        return (all(p in existing for p in self.required)
                and not any(p in existing for p in self.absent))


BUILTIN_STRUCTURE_RULES = (
    StructureRule(
        "integrity-layout",
        required=(".integrity/checksums", ".integrity/manifests"),
        version="1.0.22",
    ),
    StructureRule(
        "journal-roles",
        required=("00_admin", "01_primary_authorship", "02_coauthor_invites"),
        world_type="JOURNAL_WORLD", version="1.0.21",
    ),
    StructureRule(
        "research-studies",
        required=("02_studies",),
        world_type="RESEARCH_WORLD", version="1.0.17",
    ),
    StructureRule(
        "research-admin",
        required=("02_admin",),
        absent=("02_studies",),
        world_type="RESEARCH_WORLD", version="1.0.16",
    ),
    StructureRule("lecture-courses", required=("01_courses",), world_type="LECTURE_WORLD"),
    StructureRule("coding-projects", required=("01_projects",), world_type="CODING_WORLD"),
)


@dataclass
class Detection:
    world_type: str | None = None
    version: str | None = None
    rules: list = field(default_factory=list)     # names of satisfied rules

    @property
    def found(self) -> bool:
        return self.world_type is not None or self.version is not None


class StructureDetector:
    """Strategy that maps a set of existing paths to a Detection."""

    def __init__(self, rules=BUILTIN_STRUCTURE_RULES, world_types=KNOWN_WORLD_TYPES):
        self.rules = tuple(rules)
        self.world_types = tuple(world_types)

    def detect(self, existing, root_name: str = "", ancestors=()) -> Detection:
        """Match ``existing`` against the rules.

        Without a rule naming the world type, the root's own name and then
        its ancestors' names (nearest first) are tried against known types.
        """
        existing = frozenset(existing)
        satisfied = [r for r in self.rules if r.matches(existing)]

        versioned = [r for r in satisfied if r.version is not None]
        winner = None
        for rule in versioned:
            if winner is None or version_key(rule.version) > version_key(winner.version):
                winner = rule

        world_type = winner.world_type if winner is not None else None
        if world_type is None:
            world_type = next((r.world_type for r in satisfied if r.world_type), None)
        if world_type is None:
            world_type = next((n for n in (root_name, *ancestors) if n in self.world_types), None)

        detection = Detection(
            world_type=world_type,
            version=winner.version if winner is not None else None,
            rules=[r.name for r in satisfied],
        )
        if detection.found:
            logger.debug(
                "Structural match for %s: %s %s (rules: %s)",
                root_name or "<root>", detection.world_type, detection.version,
                ", ".join(detection.rules) or "root name",
            )
        return detection
