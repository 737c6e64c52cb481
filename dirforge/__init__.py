"""
dirforge: scaffold generation and additive migration for directory worlds

A world spec declares the directories, placeholder files and metadata
descriptor a "world" (research, journal, coding, ...) consists of. dirforge
creates that layout from scratch and brings older trees forward to newer
spec versions, only ever adding paths, never deleting or overwriting them.
"""

__version__ = "0.3.0"

__all__ = [
    # Operations
    "plan_create",
    "plan_update",
    "apply",
    "run",
    "scaffold",
    # Specs
    "WorldSpec",
    "load",
    "SpecRegistry",
    "MigrationRule",
    # Probing and planning
    "find_root",
    "ProjectState",
    "Confidence",
    "diff",
    "MigrationPlan",
    "MigrationStep",
    "StepKind",
    # Execution
    "ApplyOptions",
    "TransactionResult",
    "ResultCode",
    "MetadataWriter",
    "Descriptor",
    "Settings",
    # Errors
    "DirforgeError",
    "SpecError",
    "ConflictError",
    "ApplyError",
    "WriteError",
    "LockError",
]

_EXPORTS = {
    "plan_create": "api",
    "plan_update": "api",
    "apply": "api",
    "run": "api",
    "scaffold": "api",
    "WorldSpec": "spec",
    "load": "spec",
    "SpecRegistry": "registry",
    "MigrationRule": "registry",
    "find_root": "probe",
    "ProjectState": "probe",
    "Confidence": "probe",
    "diff": "differ",
    "MigrationPlan": "plan",
    "MigrationStep": "plan",
    "StepKind": "plan",
    "ApplyOptions": "transaction",
    "TransactionResult": "transaction",
    "ResultCode": "report",
    "MetadataWriter": "metadata",
    "Descriptor": "metadata",
    "Settings": "config",
    "DirforgeError": "errors",
    "SpecError": "errors",
    "ConflictError": "errors",
    "ApplyError": "errors",
    "WriteError": "errors",
    "LockError": "errors",
}


# Lazy imports, resolved on first access
def __getattr__(name):
    module = _EXPORTS.get(name)
    if module is None:
        raise AttributeError(f"module 'dirforge' has no attribute {name!r}")
    from importlib import import_module

    return getattr(import_module(f".{module}", __name__), name)
