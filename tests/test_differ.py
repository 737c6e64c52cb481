"""Tests for the structure differ."""

import itertools

import pytest

from dirforge.differ import diff
from dirforge.metadata import Descriptor
from dirforge.plan import ConflictKind, StepKind
from dirforge.probe import Confidence, ProjectState
from dirforge.registry import MigrationRule, SpecRegistry


def state(*dirs, files=(), root="/w/root", confidence=Confidence.UNKNOWN,
          world_type=None, version=None, descriptor=None, descriptor_path=None, exists=True):
    dirs = set(dirs)
    return ProjectState(
        root_path=root,
        root_exists=exists,
        root_is_dir=exists,
        declared_world_type=world_type,
        declared_version=version,
        detection_confidence=confidence,
        existing_paths=frozenset(dirs | set(files)),
        directories=frozenset(dirs),
        descriptor=descriptor,
        descriptor_path=descriptor_path,
        root_descriptors={descriptor_path: descriptor} if descriptor is not None else {},
    )


def paths(plan):
    return [s.path for s in plan.steps]


class TestOrdering:
    def test_declaration_order(self, make_spec):
        spec = make_spec(parents=("B", "A"), subdirectories={"B": ["z", "y"], "A": ["x"]})
        plan = diff(spec, state(exists=False), mode="create")
        assert paths(plan) == ["B", "B/z", "B/y", "A", "A/x"]

    def test_missing_intermediates_first(self, make_spec):
        spec = make_spec(subdirectories={"P": ["deep/er/est"]})
        plan = diff(spec, state(exists=False), mode="create")
        assert paths(plan) == ["P", "P/deep", "P/deep/er", "P/deep/er/est"]

    def test_files_after_directories(self, make_spec):
        spec = make_spec(
            subdirectories={"P": ["a"]},
            requiredFiles=[{"path": "README.md", "template": "readme"}, "Q/notes.txt"],
        )
        plan = diff(spec, state(exists=False), mode="create")
        assert paths(plan) == ["P", "P/a", "README.md", "Q", "Q/notes.txt"]
        kinds = [s.kind for s in plan.steps]
        assert kinds == [StepKind.CREATE_DIRECTORY] * 2 + [StepKind.CREATE_FILE, StepKind.CREATE_DIRECTORY,
                                                           StepKind.CREATE_FILE]

    def test_metadata_last(self, make_spec):
        spec = make_spec(integrity={"level": "project", "directories": ["checksums"]}, requiredFiles=["f"])
        plan = diff(spec, state(exists=False), mode="create")
        assert paths(plan) == ["P", "f", ".integrity", ".integrity/checksums", ".integrity/project.yaml"]
        assert plan.steps[-1].kind == StepKind.WRITE_METADATA
        assert plan.steps[-1].level == "project"
        assert plan.descriptor.world_type == "TEST_WORLD"
        assert plan.descriptor.created == "2026-01-02T03:04:05Z"
        assert plan.descriptor.name == "root"

    def test_readme_rendered_with_root_name(self, make_spec):
        spec = make_spec(requiredFiles=[{"path": "README.md", "template": "readme"}])
        plan = diff(spec, state(exists=False, root="/w/thermal"), mode="create")
        assert plan.steps[-1].content.startswith("# thermal\n")


class TestAdditiveOnly:
    def test_existing_paths_skipped(self, make_spec):
        spec = make_spec(subdirectories={"P": ["a", "b"]}, requiredFiles=["P/a/f.txt"])
        plan = diff(spec, state("P", "P/a", files=["P/a/f.txt"]), mode="update")
        assert paths(plan) == ["P/b"]

    def test_builtin_specs_never_target_existing(self, builtin_registry):
        for spec in builtin_registry.specs():
            declared = sorted(spec.declared_paths())
            for keep in (declared[::2], declared[1::3], declared[:5]):
                dirs = [p for p in keep if p in spec.directory_paths() or p.startswith(".integrity")
                        and not p.endswith(".yaml")]
                files = [p for p in keep if p not in dirs]
                # every ancestor of an existing path exists too
                for p in list(dirs) + files:
                    parts = p.split("/")
                    dirs.extend("/".join(parts[:i]) for i in range(1, len(parts)))
                st = state(*dirs, files=files)
                plan = diff(spec, st, builtin_registry)
                assert not set(paths(plan)) & st.existing_paths

    def test_no_removal_step_kind(self):
        assert {k.value for k in StepKind} == {"CreateDirectory", "CreateFile", "WriteMetadata"}

    def test_complete_tree_is_empty_plan(self, make_spec):
        spec = make_spec(subdirectories={"P": ["a"]}, requiredFiles=["P/f"])
        plan = diff(spec, state("P", "P/a", files=["P/f"]))
        assert plan.steps == []


class TestConflicts:
    def test_file_where_directory_declared(self, make_spec):
        spec = make_spec(parents=("P", "Q"), subdirectories={"P": ["a", "b"]})
        plan = diff(spec, state(files=["P"]), mode="update")
        assert paths(plan) == ["Q"]
        assert [(c.path, c.kind) for c in plan.conflicts] == [("P", ConflictKind.TYPE)]
        assert any("P exists as a file" in w for w in plan.manual_warnings)

    def test_directory_where_file_declared(self, make_spec):
        spec = make_spec(requiredFiles=["README.md"])
        plan = diff(spec, state("P", "README.md"))
        assert plan.conflicts[0].expected == "file"
        assert paths(plan) == []

    def test_foreign_entries_in_create_mode(self, make_spec):
        spec = make_spec()
        plan = diff(spec, state("P", "stray", files=["notes.txt"]), mode="create")
        assert sorted(c.path for c in plan.foreign_conflicts()) == ["notes.txt", "stray"]

    def test_no_foreign_check_in_update_mode(self, make_spec):
        plan = diff(make_spec(), state("P", "stray"), mode="update")
        assert plan.foreign_conflicts() == []

    def test_root_is_file(self, make_spec):
        st = state()
        st.root_is_dir = False
        plan = diff(make_spec(), st)
        assert plan.steps == []
        assert plan.conflicts[0].path == "."

    def test_invalid_mode(self, make_spec):
        with pytest.raises(ValueError):
            diff(make_spec(), state(), mode="replace")


class TestRecognition:
    def test_fresh_create_has_no_warnings(self, make_spec):
        plan = diff(make_spec(), state(exists=False), mode="create")
        assert plan.manual_warnings == []

    def test_unknown_tree_warns_but_plans(self, make_spec):
        plan = diff(make_spec(parents=("P", "Q")), state("P"), mode="update")
        assert paths(plan) == ["Q"]
        assert len(plan.manual_warnings) == 1

    def test_world_type_mismatch(self, make_spec):
        st = state("P", confidence=Confidence.EXACT, world_type="LEGACY_WORLD", version="1.0.0")
        plan = diff(make_spec(parents=("P", "Q")), st)
        assert paths(plan) == ["Q"]
        assert "LEGACY_WORLD" in plan.manual_warnings[0]

    def test_recognized_chain_no_warning(self, make_spec):
        registry = SpecRegistry()
        registry.add_rule(MigrationRule("TEST_WORLD", "0.9.0", "1.0.0"))
        st = state("P", confidence=Confidence.EXACT, world_type="TEST_WORLD", version="0.9.0")
        assert diff(make_spec(), st, registry).manual_warnings == []

    def test_missing_rule_warns(self, make_spec):
        st = state("P", confidence=Confidence.EXACT, world_type="TEST_WORLD", version="0.5.0")
        plan = diff(make_spec(), st, SpecRegistry())
        assert "manual migration required" in plan.manual_warnings[0]

    def test_no_registry_warns_on_version_change(self, make_spec):
        st = state("P", confidence=Confidence.EXACT, world_type="TEST_WORLD", version="0.9.0")
        assert len(diff(make_spec(), st).manual_warnings) == 1

    def test_same_version_no_registry_needed(self, make_spec):
        st = state("P", confidence=Confidence.EXACT, world_type="TEST_WORLD", version="1.0.0")
        assert diff(make_spec(), st).manual_warnings == []

    def test_newer_tree(self, make_spec):
        st = state("P", confidence=Confidence.EXACT, world_type="TEST_WORLD", version="2.0.0")
        assert "newer" in diff(make_spec(), st).manual_warnings[0]

    def test_heuristic_without_version(self, make_spec):
        st = state("P", confidence=Confidence.HEURISTIC, world_type="TEST_WORLD")
        assert "could not be determined" in diff(make_spec(), st).manual_warnings[0]


class TestDescriptorRefresh:
    def spec(self, make_spec):
        return make_spec(version="1.0.22", integrity={"level": "world"})

    def test_stale_descriptor_refreshed(self, make_spec):
        d = Descriptor(world_type="TEST_WORLD", version="1.0.21")
        st = state("P", ".integrity", files=[".integrity/world.yaml"], confidence=Confidence.EXACT,
                   world_type="TEST_WORLD", version="1.0.21", descriptor=d,
                   descriptor_path=".integrity/world.yaml")
        plan = diff(self.spec(make_spec), st)
        assert plan.steps == []
        assert plan.descriptor_refresh.from_version == "1.0.21"
        assert plan.descriptor_refresh.to_version == "1.0.22"
        assert not plan.is_empty()

    def test_current_descriptor_left_alone(self, make_spec):
        d = Descriptor(world_type="TEST_WORLD", version="1.0.22")
        st = state("P", ".integrity", files=[".integrity/world.yaml"], confidence=Confidence.EXACT,
                   world_type="TEST_WORLD", version="1.0.22", descriptor=d,
                   descriptor_path=".integrity/world.yaml")
        plan = diff(self.spec(make_spec), st)
        assert plan.is_empty()
        assert plan.manual_warnings == []

    def test_legacy_descriptor_gets_new_one(self, make_spec):
        d = Descriptor(world_type="TEST_WORLD", version="1.0.21")
        st = state("P", files=["project.yaml"], confidence=Confidence.EXACT,
                   world_type="TEST_WORLD", version="1.0.21", descriptor=d, descriptor_path="project.yaml")
        plan = diff(self.spec(make_spec), st)
        assert paths(plan) == [".integrity", ".integrity/world.yaml"]
        assert plan.descriptor_refresh is None

    def test_refresh_uses_descriptor_at_own_path(self, make_spec):
        legacy = Descriptor(world_type="TEST_WORLD", version="1.0.20")
        world = Descriptor(world_type="TEST_WORLD", version="1.0.21")
        st = state("P", ".integrity", files=[".integrity/project.yaml", ".integrity/world.yaml"],
                   confidence=Confidence.EXACT, world_type="TEST_WORLD", version="1.0.21",
                   descriptor=world, descriptor_path=".integrity/world.yaml")
        st.root_descriptors = {".integrity/project.yaml": legacy, ".integrity/world.yaml": world}
        plan = diff(self.spec(make_spec), st)
        assert plan.steps == []
        assert plan.descriptor_refresh.path == ".integrity/world.yaml"
        assert plan.descriptor_refresh.from_version == "1.0.21"


class TestDeterminism:
    def test_identical_plans(self, builtin_registry):
        spec = builtin_registry.latest("LECTURE_WORLD")
        st = state("00_admin", "05_exercises", files=["README.md"])
        first = diff(spec, st, builtin_registry, mode="create")
        second = diff(spec, st, builtin_registry, mode="create")
        assert first.to_dict() == second.to_dict()
        assert first.format() == second.format()

    def test_no_duplicate_steps(self, builtin_registry):
        for spec in builtin_registry.specs():
            plan = diff(spec, state(exists=False), builtin_registry, mode="create")
            assert len(paths(plan)) == len(set(paths(plan)))
            for a, b in itertools.combinations(paths(plan), 2):
                # a parent never follows its child
                assert not a.startswith(b + "/")
