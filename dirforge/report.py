"""
Result codes and reports

A front end turns a TransactionResult into a process exit status and a
machine-readable report. Both mappings live here so every front end
agrees on them.
"""

import json
from enum import Enum

from .errors import ApplyError, ConflictError, DirforgeError, LockError, SpecError, WriteError


class ResultCode(Enum):
    SUCCESS = "success"
    SUCCESS_WITH_WARNINGS = "success-with-manual-warnings"
    CONFLICT_BLOCKED = "conflict-blocked"
    ROLLED_BACK = "partial-failure-rolled-back"
    SPEC_INVALID = "spec-invalid"

    @property
    def exit_status(self) -> int:
        return _EXIT_STATUS[self]

    @property
    def ok(self) -> bool:
        return self in (ResultCode.SUCCESS, ResultCode.SUCCESS_WITH_WARNINGS)

    @classmethod
    def for_error(cls, error: Exception) -> "ResultCode":
        if isinstance(error, SpecError):
            return cls.SPEC_INVALID
        if isinstance(error, (ConflictError, LockError)):
            return cls.CONFLICT_BLOCKED
        if isinstance(error, (ApplyError, WriteError, DirforgeError)):
            return cls.ROLLED_BACK
        raise TypeError(f"No result code for {type(error).__name__}")


_EXIT_STATUS = {
    ResultCode.SUCCESS: 0,
    ResultCode.SUCCESS_WITH_WARNINGS: 0,
    ResultCode.SPEC_INVALID: 2,
    ResultCode.CONFLICT_BLOCKED: 3,
    ResultCode.ROLLED_BACK: 4,
}


def to_json(obj, indent: int = 2) -> str:
    """Serialize a plan or result report (anything with to_report())."""
    data = obj.to_report() if hasattr(obj, "to_report") else obj
    return json.dumps(data, indent=indent, sort_keys=False)


def format_result(result) -> str:
    """Human-readable summary of a TransactionResult."""
    lines = []
    if result.dry_run:
        lines.append(f"Dry run for {result.root} ({result.plan.world_type} {result.plan.spec_version})")
        lines.append(result.plan.format())
    else:
        for path in result.applied:
            lines.append(f"CREATED {path}")
        for path in result.skipped:
            lines.append(f"EXISTS  {path}")
        if result.refreshed:
            lines.append(f"UPDATED {result.refreshed}")
        for warning in result.plan.manual_warnings:
            lines.append(f"MANUAL  {warning}")
    if result.backup_path:
        lines.append(f"Backup: {result.backup_path}")
    if result.error:
        lines.append(f"Error ({result.error['kind']}): {result.error['message']}")
    lines.append(f"Status: {result.status.value}")
    return "\n".join(lines)
