"""
Public operations

The front ends (command line, installer, editor integrations) call these
and nothing else:

    plan = plan_create("research", "~/worlds/RESEARCH_WORLD", {"PROJECT_NAME": "thermal"})
    print(plan.format())
    result = run(plan, ApplyOptions(dry_run=False))
    sys.exit(result.exit_status)

apply() raises on failure; run() never raises for dirforge errors and
returns a TransactionResult tagged with the matching ResultCode instead.
"""

import logging
from pathlib import Path

from .config import Settings
from .differ import diff
from .errors import DirforgeError, SpecError
from .plan import MigrationPlan
from .probe import probe
from .registry import SpecRegistry
from .report import ResultCode
from .spec import WorldSpec, load, with_context
from .transaction import ApplyOptions, TransactionResult
from .transaction import apply as _apply

logger = logging.getLogger(__name__)


def plan_create(spec, target_root, context: dict | None = None, registry: SpecRegistry | None = None,
                *, settings: Settings | None = None, strict: bool = False, now=None) -> MigrationPlan:
    """Plan a first-time scaffold of ``spec`` at ``target_root``.

    ``spec`` is a WorldSpec or anything load() accepts.
    """
    settings = settings or Settings()
    if isinstance(spec, WorldSpec):
        spec = with_context(spec, context, strict=strict, settings=settings)
    else:
        spec = load(spec, context, strict=strict, settings=settings, now=now)
    root = Path(target_root).expanduser().absolute()
    depth = max(spec.max_depth(), registry.max_depth() if registry is not None else 0)
    state = probe(root, registry, depth=depth, settings=settings)
    return diff(spec, state, registry, mode="create", settings=settings)


def plan_update(target_root, context: dict | None = None, registry: SpecRegistry | None = None,
                *, settings: Settings | None = None, strict: bool = False, now=None) -> MigrationPlan:
    """Probe ``target_root`` and plan the upgrade to the latest spec of its world type."""
    settings = settings or Settings()
    registry = registry if registry is not None else SpecRegistry.builtin(settings)
    root = Path(target_root).expanduser().absolute()
    state = probe(root, registry, settings=settings)

    spec = registry.latest(state.declared_world_type) if state.declared_world_type else None
    if spec is None:
        plan = MigrationPlan(
            root=str(root),
            mode="update",
            world_type=state.declared_world_type,
            from_version=state.declared_version,
            confidence=state.detection_confidence.value,
        )
        if state.declared_world_type:
            plan.add_warning(
                f"No registered spec for world type {state.declared_world_type}; "
                f"known types: {', '.join(registry.world_types()) or 'none'}"
            )
        else:
            plan.add_warning(f"Could not detect the world type of {root}; nothing to update")
        for message in plan.manual_warnings:
            logger.warning("Manual migration: %s", message)
        return plan

    if context or now is not None:
        if Path(spec.source).is_file():
            spec = load(spec.source, context, strict=strict, settings=settings, now=now)
        else:
            spec = with_context(spec, context, strict=strict, settings=settings)
    return diff(spec, state, registry, mode="update", settings=settings)


def apply(plan: MigrationPlan, options: ApplyOptions | None = None,
          *, settings: Settings | None = None) -> TransactionResult:
    """Apply a plan. Raises ConflictError, LockError or ApplyError."""
    return _apply(plan, options, settings=settings)


def run(plan: MigrationPlan, options: ApplyOptions | None = None,
        *, settings: Settings | None = None) -> TransactionResult:
    """Apply a plan and report failures as a tagged result instead of raising."""
    options = options or ApplyOptions()
    try:
        return _apply(plan, options, settings=settings)
    except DirforgeError as e:
        status = ResultCode.for_error(e)
        logger.info("Apply of %s ended with %s: %s", plan.root, status.value, e)
        return TransactionResult(
            root=plan.root,
            status=status,
            plan=plan,
            dry_run=options.dry_run,
            error=e.to_dict(),
        )


def scaffold(source, target_root, context: dict | None = None, options: ApplyOptions | None = None,
             *, registry: SpecRegistry | None = None, settings: Settings | None = None,
             strict: bool = False) -> TransactionResult:
    """Load, plan and run in one call. Spec errors come back as a spec-invalid result."""
    options = options or ApplyOptions()
    try:
        plan = plan_create(source, target_root, context, registry, settings=settings, strict=strict)
    except SpecError as e:
        root = str(Path(target_root).expanduser().absolute())
        return TransactionResult(
            root=root,
            status=ResultCode.SPEC_INVALID,
            plan=MigrationPlan(root=root, mode="create"),
            dry_run=options.dry_run,
            error=e.to_dict(),
        )
    return run(plan, options, settings=settings)
