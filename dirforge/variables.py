"""
Template variables

World specs and file templates may contain ``${NAME}`` tokens. Expansion
uses a closed substitution map: a fixed set of ambient values (user,
date, timestamp, year) plus a fixed set of caller-supplied context names.

Tokens that cannot be resolved are never dropped. They stay in the text
verbatim and are reported back so the loader can turn them into warnings
(or errors in strict mode).
"""

import getpass
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

AMBIENT_VARIABLES = ("USER", "DATE", "TIMESTAMP", "YEAR")

CONTEXT_VARIABLES = (
    "PROJECT_NAME",
    "PROJECT_ID",
    "WORLD_NAME",
    "WORLD_TYPE",
    "WORKSPACE_NAME",
    "STUDY_NAME",
    "CONFIG_FILE",
    "DIRFORGE_VERSION",
)

KNOWN_VARIABLES = frozenset(AMBIENT_VARIABLES + CONTEXT_VARIABLES)

_TOKEN_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USER") or "unknown"


@dataclass(frozen=True)
class Unresolved:
    """A token that was left in place during expansion."""
    name: str
    known: bool     # part of the closed set, but no value was supplied


@dataclass
class VariableContext:
    """The substitution map used for one spec load.

    Ambient values are captured once at construction so that every string
    in a spec (and every plan computed from it) sees the same DATE.
    """
    values: dict = field(default_factory=dict)

    @classmethod
    def build(cls, context: dict | None = None, *, user: str | None = None,
              now: datetime | None = None) -> "VariableContext":
        """Build a context from caller values.

        Raises KeyError naming the first key outside the closed set.
        """
        now = now or datetime.now(timezone.utc)
        values = {
            "USER": user or current_user(),
            "DATE": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "TIMESTAMP": str(int(now.timestamp())),
            "YEAR": now.strftime("%Y"),
        }
        for key, value in (context or {}).items():
            if key not in KNOWN_VARIABLES:
                raise KeyError(key)
            if value is not None:
                values[key] = str(value)
        return cls(values=values)

    def expand(self, text: str) -> tuple[str, list[Unresolved]]:
        """Substitute every resolvable token; report the rest."""
        unresolved = []

        def _sub(match):
            name = match.group(1)
            if name in self.values:
                return self.values[name]
            unresolved.append(Unresolved(name=name, known=name in KNOWN_VARIABLES))
            return match.group(0)

        return _TOKEN_RE.sub(_sub, text), unresolved

    def with_values(self, **extra) -> "VariableContext":
        merged = dict(self.values)
        merged.update({k: str(v) for k, v in extra.items() if v is not None})
        return VariableContext(values=merged)


def find_tokens(text: str) -> list[str]:
    """Names of all ``${...}`` tokens in text, in order of appearance."""
    return _TOKEN_RE.findall(text)
