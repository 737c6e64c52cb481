"""
Spec Registry

Holds every known world spec, keyed by world type and version, together
with the migration rules that say which older versions can be walked
forward to which newer ones. There is no global "current version": callers
pass a registry around explicitly, and SpecRegistry.builtin() builds the
one bundled with dirforge.

Version strings are compared numerically ("1.0.9" < "1.0.10").
"""

import logging
import re
from dataclasses import dataclass

from .config import Settings
from .errors import SpecError
from .spec import BUILTIN_DIR, WorldSpec, list_builtin, load

logger = logging.getLogger(__name__)

ANY_WORLD = "*"


def version_key(version: str) -> tuple[int, ...]:
    """Sort key for dotted version strings. Non-numeric parts are ignored."""
    return tuple(int(n) for n in re.findall(r"\d+", str(version)))


@dataclass(frozen=True)
class MigrationRule:
    """One recognized upgrade hop for a world type (``*`` matches any type)."""
    world_type: str
    from_version: str
    to_version: str
    description: str = ""


BUILTIN_RULES = (
    MigrationRule("JOURNAL_WORLD", "1.0.20", "1.0.21", "Role-based journal layout"),
    MigrationRule("JOURNAL_WORLD", "1.0.21", "1.0.22", "Integrity metadata"),
    MigrationRule("RESEARCH_WORLD", "1.0.16", "1.0.17", "02_admin folded into 00_admin, 02_studies added"),
    MigrationRule("RESEARCH_WORLD", "1.0.17", "1.0.22", "Integrity metadata"),
    MigrationRule("OFFICE_WORLD", "1.0.10", "1.0.11", "Numbered office sections"),
    MigrationRule("OFFICE_WORLD", "1.0.11", "1.0.22", "Integrity metadata"),
    MigrationRule(ANY_WORLD, "1.0.21", "1.0.22", "Integrity metadata"),
)


class SpecRegistry:
    """Table of world specs and migration rules."""

    def __init__(self):
        self._specs: dict[str, dict[str, WorldSpec]] = {}
        self._rules: dict[tuple[str, str], MigrationRule] = {}

    # ── Specs ─────────────────────────────────────────────────

    def register(self, spec: WorldSpec) -> WorldSpec:
        versions = self._specs.setdefault(spec.world_type, {})
        if spec.spec_version in versions:
            logger.debug("Replacing %s %s in registry", spec.world_type, spec.spec_version)
        versions[spec.spec_version] = spec
        return spec

    def get(self, world_type: str, version: str | None = None) -> WorldSpec | None:
        versions = self._specs.get(world_type)
        if not versions:
            return None
        if version is None:
            return self.latest(world_type)
        return versions.get(version)

    def latest(self, world_type: str) -> WorldSpec | None:
        versions = self._specs.get(world_type)
        if not versions:
            return None
        return versions[max(versions, key=version_key)]

    def world_types(self) -> list[str]:
        return sorted(self._specs)

    def knows(self, world_type: str | None) -> bool:
        return world_type in self._specs

    def specs(self) -> list[WorldSpec]:
        return [spec for wt in self.world_types() for spec in self._specs[wt].values()]

    def max_depth(self) -> int:
        """Deepest declared path across all registered specs."""
        return max((spec.max_depth() for spec in self.specs()), default=1)

    # ── Migration rules ───────────────────────────────────────

    def add_rule(self, rule: MigrationRule) -> None:
        if version_key(rule.to_version) <= version_key(rule.from_version):
            raise ValueError(
                f"Migration rule must move forward: {rule.from_version} -> {rule.to_version}"
            )
        self._rules[(rule.world_type, rule.from_version)] = rule

    def rule_for(self, world_type: str, from_version: str) -> MigrationRule | None:
        return self._rules.get((world_type, from_version)) or self._rules.get((ANY_WORLD, from_version))

    def rules(self) -> list[MigrationRule]:
        return list(self._rules.values())

    def migration_path(self, world_type: str, from_version: str,
                       to_version: str) -> list[MigrationRule] | None:
        """Chain of rules leading from one version to another.

        Returns [] when the versions are equal and None when no chain of
        registered rules reaches the target (including downgrades).
        """
        if version_key(from_version) == version_key(to_version):
            return []
        path = []
        current = from_version
        target = version_key(to_version)
        while version_key(current) < target:
            rule = self.rule_for(world_type, current)
            if rule is None:
                return None
            path.append(rule)
            current = rule.to_version
        if version_key(current) != target:
            return None
        return path

    # ── Construction ──────────────────────────────────────────

    @classmethod
    def builtin(cls, settings: Settings | None = None) -> "SpecRegistry":
        """Registry of the bundled world specs (plus any in settings.config_dir)."""
        registry = cls()
        for path in list_builtin(settings):
            try:
                registry.register(load(path, settings=settings))
            except SpecError as e:
                if path.parent != BUILTIN_DIR:
                    logger.warning("Skipping invalid user world spec %s: %s", path, e)
                    continue
                raise
        for rule in BUILTIN_RULES:
            registry.add_rule(rule)
        return registry
