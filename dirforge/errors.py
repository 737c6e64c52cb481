"""
Error taxonomy.

Every failure the engine surfaces carries a stable ``kind`` string and the
offending path, so automation can branch on ``err.kind`` without parsing the
message. Probe ambiguity and manual-migration notices are not errors: they
travel as data on ProjectState and MigrationPlan.
"""


class DirforgeError(Exception):
    """Base class for all dirforge errors."""

    kind = "Error"

    def __init__(self, message: str, *, kind: str | None = None, path=None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.path = str(path) if path is not None else None

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "kind": self.kind,
            "path": self.path,
            "message": str(self),
        }


class SpecError(DirforgeError):
    """Malformed or unsafe world specification. Always fatal."""

    kind = "InvalidDocument"

    MISSING_FIELD = "MissingField"
    UNSAFE_PATH = "UnsafePath"
    DUPLICATE_PATH = "DuplicatePath"
    INVALID_DOCUMENT = "InvalidDocument"
    INVALID_FIELD = "InvalidField"
    UNKNOWN_SOURCE = "UnknownSource"
    UNRESOLVED_VARIABLE = "UnresolvedVariable"
    UNKNOWN_VARIABLE = "UnknownVariable"


class ConflictError(DirforgeError):
    """Destination holds content the plan does not account for."""

    kind = "Conflict"

    def __init__(self, message: str, *, path=None, conflicts=()):
        super().__init__(message, path=path)
        self.conflicts = list(conflicts)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["conflicts"] = self.conflicts
        return d


class ApplyError(DirforgeError):
    """A filesystem step failed; the transaction was rolled back."""

    kind = "StepFailed"

    def __init__(self, message: str, *, path=None, cause=None, rollback_errors=()):
        super().__init__(message, path=path)
        self.cause = cause
        self.rollback_errors = list(rollback_errors)

    @property
    def rolled_back_cleanly(self) -> bool:
        return not self.rollback_errors

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["cause"] = str(self.cause) if self.cause is not None else None
        d["rollback_errors"] = self.rollback_errors
        return d


class WriteError(DirforgeError):
    """A metadata descriptor could not be written."""

    kind = "WriteFailed"


class LockError(DirforgeError):
    """Another process holds the advisory lock on the target root."""

    kind = "Locked"

    def __init__(self, message: str, *, path=None, owner=None):
        super().__init__(message, path=path)
        self.owner = owner
