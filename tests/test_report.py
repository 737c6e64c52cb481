"""Tests for result codes, JSON reports and the human-readable listing."""

import json

import pytest

from dirforge.errors import ApplyError, ConflictError, DirforgeError, LockError, SpecError, WriteError
from dirforge.plan import Conflict, ConflictKind, MigrationPlan, MigrationStep, StepKind
from dirforge.report import ResultCode, format_result, to_json
from dirforge.transaction import TransactionResult


def sample_plan():
    plan = MigrationPlan(root="/w/root", mode="create", world_type="TEST_WORLD", spec_version="1.0.0",
                         confidence="unknown")
    plan.add_step(MigrationStep(kind=StepKind.CREATE_DIRECTORY, path="P", mode=0o755))
    plan.add_step(MigrationStep(kind=StepKind.CREATE_FILE, path="P/README.md", content="# x\n"))
    plan.add_step(MigrationStep(kind=StepKind.WRITE_METADATA, path=".integrity/world.yaml", level="world"))
    return plan


class TestResultCode:
    @pytest.mark.parametrize("code,status", [
        (ResultCode.SUCCESS, 0),
        (ResultCode.SUCCESS_WITH_WARNINGS, 0),
        (ResultCode.SPEC_INVALID, 2),
        (ResultCode.CONFLICT_BLOCKED, 3),
        (ResultCode.ROLLED_BACK, 4),
    ])
    def test_exit_status(self, code, status):
        assert code.exit_status == status

    def test_ok(self):
        assert ResultCode.SUCCESS_WITH_WARNINGS.ok
        assert not ResultCode.CONFLICT_BLOCKED.ok

    @pytest.mark.parametrize("error,code", [
        (SpecError("bad", kind=SpecError.MISSING_FIELD), ResultCode.SPEC_INVALID),
        (ConflictError("stray"), ResultCode.CONFLICT_BLOCKED),
        (LockError("held"), ResultCode.CONFLICT_BLOCKED),
        (ApplyError("boom"), ResultCode.ROLLED_BACK),
        (WriteError("disk"), ResultCode.ROLLED_BACK),
        (DirforgeError("other"), ResultCode.ROLLED_BACK),
    ])
    def test_for_error(self, error, code):
        assert ResultCode.for_error(error) == code

    def test_for_foreign_error(self):
        with pytest.raises(TypeError):
            ResultCode.for_error(RuntimeError("x"))


class TestPlanReport:
    def test_keys(self):
        report = json.loads(to_json(sample_plan()))
        assert report["worldType"] == "TEST_WORLD"
        assert report["dryRun"] is True
        assert report["directories"] == ["P"]
        assert report["files"] == ["P/README.md", ".integrity/world.yaml"]
        assert report["steps"][2] == {"kind": "WriteMetadata", "path": ".integrity/world.yaml"}
        assert "descriptorRefresh" not in report

    def test_conflicts_serialized(self):
        plan = sample_plan()
        plan.add_conflict(Conflict(path="stray", kind=ConflictKind.FOREIGN, message="stray is foreign"))
        plan.add_conflict(Conflict(path="stray", kind=ConflictKind.FOREIGN, message="again"))
        report = plan.to_report()
        assert report["conflicts"] == [{"path": "stray", "kind": "foreign", "message": "stray is foreign"}]

    def test_format(self):
        plan = sample_plan()
        plan.add_warning("check this")
        plan.add_warning("check this")
        assert plan.format() == (
            "ADD P/\n"
            "ADD P/README.md\n"
            "ADD .integrity/world.yaml\n"
            "MANUAL check this"
        )

    def test_format_empty(self):
        assert MigrationPlan(root="/w").format() == "Nothing to do"


class TestResultReport:
    def test_applied_result(self):
        result = TransactionResult(root="/w/root", status=ResultCode.SUCCESS, plan=sample_plan(),
                                   applied=["P", "P/README.md"], skipped=[".integrity/world.yaml"])
        report = json.loads(to_json(result))
        assert report["status"] == "success"
        assert report["dryRun"] is False
        assert report["applied"] == ["P", "P/README.md"]
        assert report["error"] is None
        text = format_result(result)
        assert "CREATED P" in text
        assert "EXISTS  .integrity/world.yaml" in text
        assert text.endswith("Status: success")

    def test_error_result(self):
        error = ConflictError("stray entries", path="/w/root", conflicts=["stray"])
        result = TransactionResult(root="/w/root", status=ResultCode.for_error(error), plan=sample_plan(),
                                   error=error.to_dict())
        text = format_result(result)
        assert "Error (Conflict): stray entries" in text
        assert result.exit_status == 3

    def test_dry_run_lists_plan(self):
        result = TransactionResult(root="/w/root", status=ResultCode.SUCCESS, plan=sample_plan(), dry_run=True)
        text = format_result(result)
        assert text.startswith("Dry run for /w/root (TEST_WORLD 1.0.0)\nADD P/")
