"""
World Specs

A world spec is the declarative description of a directory layout: which
parent directories a world type has, which subdirectories live under each
parent, which placeholder files must exist, and where the metadata
descriptor goes. Specs are YAML documents, either bundled with dirforge
(dirforge/worlds/<name>.world.yaml) or supplied by the user.

Document shape:

    worldType: RESEARCH_WORLD
    specVersion: "1.0.22"
    description: Research projects
    parentDirectories:
      - name: 00_admin
        description: Contracts, ethics, agreements
      - name: 01_project_management
    subdirectories:
      01_project_management:
        - 01_proposal                       # -> 01_project_management/01_proposal
        - name: 02_finance
          children: [01_budget]             # -> .../02_finance/01_budget
    requiredFiles:
      - path: README.md
        template: readme
    integrity:
      level: project
      directories: [checksums, manifests]

The older key spellings (world.type, metadata.version, parent_directories,
required_files, list-form subdirectories with parent/structure) are
accepted too. Unknown top-level keys are ignored.

Loading is pure: it parses, expands ${VARIABLES}, and validates paths. It
never looks at the tree a spec will be applied to.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath

import yaml

from .config import Settings
from .errors import SpecError
from .metadata import DESCRIPTOR_LEVELS
from .serializable import Serializable
from .variables import KNOWN_VARIABLES, VariableContext

logger = logging.getLogger(__name__)

BUILTIN_DIR = Path(__file__).parent / "worlds"
SPEC_SUFFIX = ".world.yaml"


@dataclass(frozen=True)
class ParentDirectory(Serializable):
    name: str
    description: str = ""


@dataclass(frozen=True)
class RequiredFile(Serializable):
    _skip_none = True

    path: str
    template: str = "empty"
    content: str | None = None


@dataclass(frozen=True)
class IntegritySpec(Serializable):
    """Where the metadata descriptor for this world lives."""
    level: str = "world"
    directory: str = ".integrity"
    directories: tuple[str, ...] = ()

    @property
    def descriptor_path(self) -> str:
        return f"{self.directory}/{self.level}.yaml"

    def paths(self) -> list[str]:
        return [self.directory] + [f"{self.directory}/{d}" for d in self.directories]


@dataclass(frozen=True)
class SpecWarning(Serializable):
    """Non-fatal problem found while loading a spec."""
    kind: str
    message: str
    location: str = ""


@dataclass
class WorldSpec(Serializable):
    """The target layout for one world type at one version."""
    world_type: str
    spec_version: str
    parent_directories: tuple[ParentDirectory, ...]
    subdirectories: dict = field(default_factory=dict)       # parent name -> tuple of paths
    required_files: tuple[RequiredFile, ...] = ()
    integrity: IntegritySpec | None = None
    description: str = ""
    source: str = "<memory>"
    variables: VariableContext = field(default_factory=VariableContext, repr=False, compare=False)
    warnings: tuple[SpecWarning, ...] = ()
    document: dict | None = field(default=None, repr=False, compare=False)   # as loaded, unexpanded

    def to_dict(self) -> dict:
        d = super().to_dict()
        d.pop("variables", None)
        d.pop("document", None)
        return d

    def directory_paths(self) -> list[str]:
        """Declared directories in declaration order: each parent, then its subdirectories."""
        paths = []
        for parent in self.parent_directories:
            paths.append(parent.name)
            paths.extend(self.subdirectories.get(parent.name, ()))
        return paths

    def file_paths(self) -> list[str]:
        return [f.path for f in self.required_files]

    def declared_paths(self) -> set[str]:
        paths = set(self.directory_paths()) | set(self.file_paths())
        if self.integrity is not None:
            paths.update(self.integrity.paths())
            paths.add(self.integrity.descriptor_path)
        return paths

    def top_level_names(self) -> set[str]:
        return {PurePosixPath(p).parts[0] for p in self.declared_paths()}

    def max_depth(self) -> int:
        return max((len(PurePosixPath(p).parts) for p in self.declared_paths()), default=1)


# ── Path validation ───────────────────────────────────────────


def normalize_path(raw, location: str = "") -> str:
    """Validate a declared path and return it in canonical POSIX form.

    Raises SpecError(UnsafePath) for absolute paths or any ``..`` segment.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise SpecError(
            f"Empty or non-string path at {location or 'spec'}",
            kind=SpecError.INVALID_FIELD, path=raw,
        )
    text = raw.strip().replace("\\", "/")
    if "\0" in text:
        raise SpecError(f"Path contains a NUL byte: {raw!r}", kind=SpecError.UNSAFE_PATH, path=raw)
    if text.startswith("/") or (len(text) > 1 and text[1] == ":"):
        raise SpecError(f"Absolute path not allowed: {raw!r}", kind=SpecError.UNSAFE_PATH, path=raw)
    parts = [p for p in text.split("/") if p not in ("", ".")]
    if ".." in parts:
        raise SpecError(f"Path traversal not allowed: {raw!r}", kind=SpecError.UNSAFE_PATH, path=raw)
    if not parts:
        raise SpecError(f"Path resolves to the root: {raw!r}", kind=SpecError.UNSAFE_PATH, path=raw)
    return "/".join(parts)


# ── Source resolution ─────────────────────────────────────────


def _looks_like_path(source) -> bool:
    if isinstance(source, Path):
        return True
    return "/" in source or "\\" in source or source.endswith((".yaml", ".yml"))


def _builtin_name(world: str) -> str:
    name = world.strip().lower()
    if name.endswith("_world"):
        name = name[: -len("_world")]
    return name


def resolve_source(source, settings: Settings | None = None) -> Path:
    """Resolve a built-in identifier or a document path to a file."""
    if _looks_like_path(source):
        path = Path(source).expanduser()
        if not path.is_file():
            raise SpecError(f"World spec not found: {path}", kind=SpecError.UNKNOWN_SOURCE, path=path)
        return path.resolve()

    name = _builtin_name(str(source))
    search = []
    if settings is not None and settings.config_dir:
        search.append(Path(settings.config_dir).expanduser())
    search.append(BUILTIN_DIR)
    for directory in search:
        candidate = directory / f"{name}{SPEC_SUFFIX}"
        if candidate.is_file():
            return candidate
    raise SpecError(
        f"No world spec for {source!r} (searched: {', '.join(str(d) for d in search)})",
        kind=SpecError.UNKNOWN_SOURCE,
    )


def list_builtin(settings: Settings | None = None) -> list[Path]:
    """All spec documents in the bundled and configured directories."""
    dirs = [BUILTIN_DIR]
    if settings is not None and settings.config_dir:
        dirs.append(Path(settings.config_dir).expanduser())
    found = {}
    for directory in dirs:
        if directory.is_dir():
            for path in sorted(directory.glob(f"*{SPEC_SUFFIX}")):
                found[path.name] = path
    return [found[k] for k in sorted(found)]


# ── Loading ───────────────────────────────────────────────────


def load(source, context: dict | None = None, *, strict: bool = False,
         settings: Settings | None = None, now=None) -> WorldSpec:
    """Load and validate a world spec from a built-in id or a document path."""
    path = resolve_source(source, settings)
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise SpecError(f"Invalid YAML in {path}: {e}", kind=SpecError.INVALID_DOCUMENT, path=path) from e
    except OSError as e:
        raise SpecError(f"Cannot read {path}: {e}", kind=SpecError.UNKNOWN_SOURCE, path=path) from e

    label = str(source) if not _looks_like_path(source) else str(path)
    return parse(document, context, source=label, strict=strict, settings=settings, now=now,
                 config_file=str(path))


def parse(document, context: dict | None = None, *, source: str = "<memory>",
          strict: bool = False, settings: Settings | None = None, now=None,
          config_file: str | None = None) -> WorldSpec:
    """Build a WorldSpec from an already-parsed document."""
    if not isinstance(document, dict):
        raise SpecError(
            f"World spec {source} must be a mapping, got {type(document).__name__}",
            kind=SpecError.INVALID_DOCUMENT, path=source,
        )

    try:
        variables = VariableContext.build(context, user=settings.user if settings else None, now=now)
    except KeyError as e:
        raise SpecError(
            f"Unknown context variable {e.args[0]!r}",
            kind=SpecError.UNKNOWN_VARIABLE,
        ) from None

    raw_type = _first(document, ("worldType",), ("world", "type"), ("world_type",))
    if isinstance(raw_type, str) and "WORLD_TYPE" not in variables.values:
        variables = variables.with_values(WORLD_TYPE=raw_type)
    if config_file and "CONFIG_FILE" not in variables.values:
        variables = variables.with_values(CONFIG_FILE=config_file)
    return _build(document, variables, source=source, strict=strict, settings=settings)


def with_context(spec: WorldSpec, context: dict | None, *, strict: bool = False,
                 settings: Settings | None = None) -> WorldSpec:
    """Re-expand ``spec`` with extra context values, paths included.

    USER, DATE and the other values captured at load time are kept.
    """
    if not context:
        return spec
    unknown = sorted(set(context) - KNOWN_VARIABLES)
    if unknown:
        raise SpecError(f"Unknown context variable {unknown[0]!r}", kind=SpecError.UNKNOWN_VARIABLE)
    variables = spec.variables.with_values(**context)
    if spec.document is None:
        return replace(spec, variables=variables)
    return _build(spec.document, variables, source=spec.source, strict=strict, settings=settings)


def _build(document: dict, variables: VariableContext, *, source: str, strict: bool,
           settings: Settings | None) -> WorldSpec:
    warnings = []
    expanded = _expand(document, variables, warnings, strict, "")

    world_type = _require_str(expanded, "worldType", ("worldType",), ("world", "type"), ("world_type",))
    spec_version = _require_str(
        expanded, "specVersion", ("specVersion",), ("metadata", "version"), ("spec_version",), ("version",)
    )
    description = _first(expanded, ("description",), ("world", "description")) or ""

    raw_parents = _first(expanded, ("parentDirectories",), ("parent_directories",))
    if not raw_parents:
        raise SpecError(
            f"Missing required field 'parentDirectories' in {source}",
            kind=SpecError.MISSING_FIELD, path=source,
        )
    parents = _parse_parents(raw_parents)

    seen: dict[str, str] = {}
    for p in parents:
        _claim(seen, p.name, "parentDirectories")

    subdirectories = _parse_subdirectories(
        _first(expanded, ("subdirectories",)) or {}, {p.name for p in parents}
    )
    for parent_name, paths in subdirectories.items():
        for path in paths:
            _claim(seen, path, f"subdirectories.{parent_name}")

    required_files = _parse_required_files(_first(expanded, ("requiredFiles",), ("required_files",)) or [])
    for rf in required_files:
        _claim(seen, rf.path, "requiredFiles")

    integrity = _parse_integrity(_first(expanded, ("integrity",)), settings)
    if integrity is not None:
        for path in integrity.paths() + [integrity.descriptor_path]:
            _claim(seen, path, "integrity")

    spec = WorldSpec(
        world_type=world_type,
        spec_version=spec_version,
        parent_directories=tuple(parents),
        subdirectories={k: tuple(v) for k, v in subdirectories.items()},
        required_files=tuple(required_files),
        integrity=integrity,
        description=str(description),
        source=source,
        variables=variables,
        warnings=tuple(warnings),
        document=document,
    )
    logger.debug(
        "Loaded spec %s %s from %s (%d paths, %d warnings)",
        world_type, spec_version, source, len(spec.declared_paths()), len(warnings),
    )
    return spec


def _expand(value, variables: VariableContext, warnings: list, strict: bool, location: str):
    """Recursively expand ${VARS} in every string value of a document."""
    if isinstance(value, str):
        text, unresolved = variables.expand(value)
        for token in unresolved:
            reason = "has no value" if token.known else "is not a supported variable"
            message = f"${{{token.name}}} {reason} (left verbatim at {location or 'document'})"
            if strict:
                raise SpecError(message, kind=SpecError.UNRESOLVED_VARIABLE, path=location or None)
            logger.warning("Unresolved variable: %s", message)
            warnings.append(SpecWarning(kind="UnresolvedVariable", message=message, location=location))
        return text
    if isinstance(value, dict):
        return {
            k: _expand(v, variables, warnings, strict, f"{location}.{k}" if location else str(k))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_expand(v, variables, warnings, strict, f"{location}[{i}]") for i, v in enumerate(value)]
    return value


def _first(document: dict, *keypaths):
    for keypath in keypaths:
        node = document
        for key in keypath:
            if not isinstance(node, dict) or key not in node:
                node = None
                break
            node = node[key]
        if node is not None:
            return node
    return None


def _require_str(document: dict, name: str, *keypaths) -> str:
    value = _first(document, *keypaths)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise SpecError(f"Missing required field '{name}'", kind=SpecError.MISSING_FIELD, path=name)
    if isinstance(value, (dict, list)):
        raise SpecError(f"Field '{name}' must be a scalar", kind=SpecError.INVALID_FIELD, path=name)
    return str(value).strip()


def _claim(seen: dict, path: str, where: str):
    if path in seen:
        raise SpecError(
            f"Duplicate path {path!r} (declared in {seen[path]} and {where})",
            kind=SpecError.DUPLICATE_PATH, path=path,
        )
    seen[path] = where


def _parse_parents(raw) -> list[ParentDirectory]:
    if not isinstance(raw, list):
        raise SpecError("'parentDirectories' must be a list", kind=SpecError.INVALID_FIELD)
    parents = []
    for i, entry in enumerate(raw):
        location = f"parentDirectories[{i}]"
        if isinstance(entry, str):
            name, description = entry, ""
        elif isinstance(entry, dict):
            name, description = entry.get("name"), entry.get("description") or ""
        else:
            raise SpecError(f"Invalid entry at {location}", kind=SpecError.INVALID_FIELD)
        parents.append(ParentDirectory(name=normalize_path(name, location), description=str(description)))
    return parents


def _parse_subdirectories(raw, parent_names: set) -> dict:
    """Normalize both the mapping form and the older list form to parent -> [paths]."""
    if isinstance(raw, list):
        mapping = {}
        for i, entry in enumerate(raw):
            if not isinstance(entry, dict) or "parent" not in entry:
                raise SpecError(f"Invalid entry at subdirectories[{i}]", kind=SpecError.INVALID_FIELD)
            mapping.setdefault(entry["parent"], []).extend(entry.get("structure") or [])
        raw = mapping
    if not isinstance(raw, dict):
        raise SpecError("'subdirectories' must be a mapping", kind=SpecError.INVALID_FIELD)

    result = {}
    for parent, entries in raw.items():
        parent_name = normalize_path(parent, "subdirectories")
        if parent_name not in parent_names:
            raise SpecError(
                f"subdirectories refer to undeclared parent {parent_name!r}",
                kind=SpecError.INVALID_FIELD, path=parent_name,
            )
        paths: list[str] = []
        _flatten_children(parent_name, entries or [], paths, f"subdirectories.{parent_name}")
        result[parent_name] = paths
    return result


def _flatten_children(base: str, entries, out: list, location: str):
    if not isinstance(entries, list):
        raise SpecError(f"Expected a list at {location}", kind=SpecError.INVALID_FIELD, path=base)
    for i, entry in enumerate(entries):
        here = f"{location}[{i}]"
        children = None
        if isinstance(entry, dict):
            name, children = entry.get("name"), entry.get("children")
        else:
            name = entry
        rel = normalize_path(name, here)
        path = rel if rel == base or rel.startswith(base + "/") else f"{base}/{rel}"
        if path == base:
            raise SpecError(f"Subdirectory {rel!r} repeats its parent", kind=SpecError.DUPLICATE_PATH, path=path)
        out.append(path)
        if children:
            _flatten_children(path, children, out, f"{here}.children")


def _parse_required_files(raw) -> list[RequiredFile]:
    if not isinstance(raw, list):
        raise SpecError("'requiredFiles' must be a list", kind=SpecError.INVALID_FIELD)
    files = []
    for i, entry in enumerate(raw):
        location = f"requiredFiles[{i}]"
        if isinstance(entry, str):
            entry = {"path": entry}
        if not isinstance(entry, dict):
            raise SpecError(f"Invalid entry at {location}", kind=SpecError.INVALID_FIELD)
        path = normalize_path(entry.get("path") or entry.get("relativePath"), location)
        template = entry.get("template") or entry.get("templateId") or "empty"
        content = entry.get("content")
        files.append(RequiredFile(path=path, template=str(template),
                                  content=None if content is None else str(content)))
    return files


def _parse_integrity(raw, settings: Settings | None) -> IntegritySpec | None:
    if raw is None or raw is False:
        return None
    directory = settings.integrity_dir if settings is not None else ".integrity"
    if raw is True:
        return IntegritySpec(directory=directory)
    if not isinstance(raw, dict):
        raise SpecError("'integrity' must be a mapping or a boolean", kind=SpecError.INVALID_FIELD)
    level = str(raw.get("level") or "world")
    if level not in DESCRIPTOR_LEVELS:
        raise SpecError(
            f"Invalid integrity level {level!r} (expected one of {', '.join(DESCRIPTOR_LEVELS)})",
            kind=SpecError.INVALID_FIELD, path="integrity.level",
        )
    directory = normalize_path(raw.get("directory") or directory, "integrity.directory")
    subdirs = tuple(normalize_path(d, "integrity.directories") for d in raw.get("directories") or [])
    return IntegritySpec(level=level, directory=directory, directories=subdirs)
