# tests/test_record_store.py
import json

import pytest

from cmdsave.command_chain import ChainDependency, ChainStep
from cmdsave.command_record import Command
from cmdsave.exceptions import (
    ChainNotFoundError,
    CommandNotFoundError,
    CyclicDependencyError,
    StoreError,
    ValidationError,
)
from cmdsave.record_store import RecordStore
from cmdsave.store_config import StoreConfig


def reload(store_path):
    s = RecordStore(StoreConfig(path=store_path))
    s.load()
    return s


def test_load_creates_missing_file(tmp_path):
    path = tmp_path / "nested" / "history.json"
    s = RecordStore(StoreConfig(path=path))
    s.load()
    assert path.exists()
    assert json.loads(path.read_text()) == {"commands": [], "chains": []}


def test_load_legacy_bare_list(store_path):
    store_path.write_text(
        json.dumps(
            [
                {"command": "ls", "id": 4, "timestamp": "2023-01-01T00:00:00Z"},
                {"command": "pwd", "id": 9, "timestamp": "2023-01-02T00:00:00Z"},
            ]
        )
    )
    s = reload(store_path)
    assert [c.raw for c in s.commands] == ["ls", "pwd"]
    assert s.chains == []
    # Counter continues after the highest stored ID
    assert s.add_command(Command(raw="whoami")).id == 10


def test_invalid_json_raises_store_error(store_path):
    store_path.write_text("{not json")
    with pytest.raises(StoreError, match="not valid JSON"):
        reload(store_path)


def test_mutations_persist(store, store_path, add_commands):
    (cid,) = add_commands("make test")
    store.set_favorite(cid)
    store.add_tags(cid, ["build", "ci", "build"])
    store.set_description(cid, "run the tests")

    again = reload(store_path)
    cmd = again.get_command(cid)
    assert cmd.is_favorite
    assert cmd.tags == ["build", "ci"]
    assert cmd.description == "run the tests"


def test_manipulate_tags_sorted(store, add_commands):
    (cid,) = add_commands("make")
    store.add_tags(cid, ["zeta", "alpha"])
    cmd = store.manipulate_tags(cid, add=["mid"], remove=["zeta"])
    assert cmd.tags == ["alpha", "mid"]


def test_record_run_counts(store, add_commands):
    (cid,) = add_commands("make")
    store.record_run(cid, 0)
    store.record_run(cid, 2)
    cmd = store.get_command(cid)
    assert (cmd.run_count, cmd.success_count, cmd.exit_code) == (2, 1, 2)
    assert store.stats().total_runs == 2


def test_ids_never_reused_after_removal(store, add_commands):
    a, b = add_commands("echo a", "echo b")
    store.remove_command(b)
    (c,) = add_commands("echo c")
    assert c == b + 1


def test_remove_unknown_command(store):
    with pytest.raises(CommandNotFoundError):
        store.remove_commands([99])
    with pytest.raises(ValidationError):
        store.remove_commands([])


def test_search_and_filters(store):
    store.add_command(Command(raw="git push", tags=["vcs"], working_dir="/work/app"))
    store.add_command(Command(raw="make", description="Build via GIT hooks"))
    store.add_command(Command(raw="ls"))
    assert len(store.search("git")) == 2
    assert [c.raw for c in store.filter_by_tag("VCS")] == ["git push"]
    assert [c.raw for c in store.filter_by_dir("app")] == ["git push"]


def test_tag_counts_sorted_by_usage_then_name(store):
    assert store.tag_counts() == []
    store.add_command(Command(raw="make", tags=["build", "ci"]))
    store.add_command(Command(raw="make test", tags=["ci", "test"]))
    store.add_command(Command(raw="ls"))
    assert store.tag_counts() == [("ci", 2), ("build", 1), ("test", 1)]


def test_save_clamps_success_count_from_loaded_file(store_path):
    store_path.write_text(
        json.dumps(
            {
                "commands": [
                    {"command": "echo a", "id": 1, "timestamp": "2024-01-01T00:00:00Z"},
                    {
                        "command": "echo b",
                        "id": 2,
                        "timestamp": "2024-01-01T00:00:00Z",
                        "run_count": 1,
                        "success_count": 3,
                    },
                ],
                "chains": [],
            }
        )
    )
    s = reload(store_path)
    s.set_favorite(1, True)

    written = json.loads(store_path.read_text())["commands"][1]
    assert written["success_count"] == written["run_count"] == 1
    assert s.get_command(2).success_count == 1
    assert s.stats().success_rate <= 100


def test_import_assigns_fresh_ids_and_clamps(store, add_commands, tmp_path):
    add_commands("echo existing")
    source = tmp_path / "import.json"
    source.write_text(
        json.dumps(
            [
                {"command": "echo one", "id": 1, "run_count": 1, "success_count": 5},
                {"command": "echo two", "id": 1},
            ]
        )
    )
    imported = store.import_commands(source)
    assert [c.id for c in imported] == [2, 3]
    assert imported[0].success_count == 1
    assert len({c.id for c in store.commands}) == 3


def test_import_rejects_non_array(store, tmp_path):
    source = tmp_path / "import.json"
    source.write_text('{"command": "ls"}')
    with pytest.raises(ValidationError):
        store.import_commands(source)


def test_export_writes_array(store, add_commands, tmp_path):
    add_commands("echo a", "echo b")
    dest = tmp_path / "out.json"
    assert store.export_commands(dest) == 2
    assert [c["command"] for c in json.loads(dest.read_text())] == ["echo a", "echo b"]


# ─────────────────────────────────────────────────────────────────────────────
# Chains
# ─────────────────────────────────────────────────────────────────────────────
def test_add_chain_validates_command_references(store, add_commands):
    (a,) = add_commands("echo a")
    with pytest.raises(CommandNotFoundError):
        store.add_chain("bad", steps=[ChainStep(command_id=a, on_failure=[42])])
    assert store.chains == []


def test_add_chain_validates_dependency_references(store):
    with pytest.raises(ChainNotFoundError):
        store.add_chain("bad", dependencies=[ChainDependency(chain_id=0, depends_on=[5])])


def test_add_chain_sets_dependency_owner(store):
    base = store.create_chain("base")
    top = store.add_chain("top", dependencies=[ChainDependency(chain_id=0, depends_on=[base.id])])
    assert top.dependencies[0].chain_id == top.id
    assert store.dependency_order() == [base.id, top.id]


def test_diamond_dependencies_accepted(store):
    shared = store.create_chain("shared")
    left = store.add_chain("left", dependencies=[ChainDependency(chain_id=0, depends_on=[shared.id])])
    right = store.add_chain("right", dependencies=[ChainDependency(chain_id=0, depends_on=[shared.id])])
    top = store.add_chain(
        "top", dependencies=[ChainDependency(chain_id=0, depends_on=[left.id, right.id])]
    )

    order = store.dependency_order()
    assert order[0] == shared.id
    assert order[-1] == top.id
    assert sorted(order) == [shared.id, left.id, right.id, top.id]
    assert not any("cycle" in p for p in store.verify_integrity())


def test_self_dependency_rejected(store):
    with pytest.raises(CyclicDependencyError):
        store.add_chain("loop", dependencies=[ChainDependency(chain_id=0, depends_on=[1])])
    assert store.chains == []


def test_cycle_through_stored_chains_detected_on_load(store, store_path):
    store_path.write_text(
        json.dumps(
            {
                "commands": [],
                "chains": [
                    {"id": 1, "name": "a", "steps": [], "dependencies": [{"chain_id": 1, "depends_on": [2]}]},
                    {"id": 2, "name": "b", "steps": [], "dependencies": [{"chain_id": 2, "depends_on": [1]}]},
                ],
            }
        )
    )
    s = reload(store_path)
    with pytest.raises(CyclicDependencyError):
        s.dependency_order()
    assert any("cycle" in p for p in s.verify_integrity())
    # A new chain depending on the cycle is refused
    with pytest.raises(CyclicDependencyError):
        s.add_chain("c", dependencies=[ChainDependency(chain_id=0, depends_on=[1])])


def test_remove_chain_refused_while_depended_on(store):
    base = store.create_chain("base")
    store.add_chain("top", dependencies=[ChainDependency(chain_id=0, depends_on=[base.id])])
    with pytest.raises(ValidationError):
        store.remove_chain(base.id)


def test_chain_round_trip(store, store_path, add_commands):
    a, b = add_commands("echo a", "echo b")
    store.add_chain(
        "pipeline",
        "build then report",
        steps=[ChainStep(command_id=a, parallel_with=[b], on_success=[b])],
    )
    chain = reload(store_path).get_chain(1)
    assert chain.name == "pipeline"
    assert chain.steps[0].parallel_with == [b]
    assert chain.last_run is None


def test_create_chain_from_files(store, add_commands, tmp_path):
    a, b = add_commands("echo a", "echo b")
    base = store.create_chain("base")
    steps = tmp_path / "steps.json"
    deps = tmp_path / "deps.json"
    steps.write_text(json.dumps([{"command_id": a}, {"command_id": b, "on_failure": [a]}]))
    deps.write_text(json.dumps([{"chain_id": 0, "depends_on": [base.id], "wait_policy": "any"}]))

    chain = store.create_chain_from_files("from files", "", steps, deps)
    assert len(chain.steps) == 2
    assert chain.dependencies[0].wait_policy.value == "any"


def test_create_chain_from_files_rejects_bad_json(store, tmp_path):
    steps = tmp_path / "steps.json"
    deps = tmp_path / "deps.json"
    steps.write_text("[")
    deps.write_text("[]")
    with pytest.raises(ValidationError, match="steps"):
        store.create_chain_from_files("x", "", steps, deps)


def test_lenient_chain_load_keeps_unknown_conditions(store_path):
    store_path.write_text(
        json.dumps(
            {
                "commands": [{"command": "echo a", "id": 1}],
                "chains": [
                    {
                        "id": 1,
                        "name": "c",
                        "steps": [
                            {
                                "command_id": 1,
                                "conditions": [{"type": "weather", "operation": "is", "value": "sun"}],
                            }
                        ],
                        "dependencies": [{"chain_id": 1, "depends_on": [], "wait_policy": "most"}],
                    }
                ],
            }
        )
    )
    s = reload(store_path)
    s.save()
    saved = json.loads(store_path.read_text())
    assert saved["chains"][0]["steps"][0]["conditions"][0]["type"] == "weather"
    assert saved["chains"][0]["dependencies"][0]["wait_policy"] == "all"


# ─────────────────────────────────────────────────────────────────────────────
# Integrity
# ─────────────────────────────────────────────────────────────────────────────
def test_verify_and_repair(store_path):
    store_path.write_text(
        json.dumps(
            {
                "commands": [
                    {"command": "echo a", "id": 1, "timestamp": "2024-01-01T00:00:00Z"},
                    {"command": "echo dup", "id": 1, "timestamp": "2024-01-01T00:00:00Z"},
                    {"command": "echo b", "id": 2, "run_count": 1, "success_count": 3},
                ],
                "chains": [
                    {
                        "id": 1,
                        "name": "c",
                        "steps": [{"command_id": 1}],
                        "dependencies": [{"chain_id": 1, "depends_on": [7]}],
                    }
                ],
            }
        )
    )
    s = reload(store_path)
    problems = s.verify_integrity()
    assert "duplicate command ID found: 1" in problems
    assert "chain 1 depends on non-existent chain 7" in problems
    assert "command 2 has invalid timestamp" in problems
    assert "command 2 has more successes than runs" in problems

    fixes = s.repair_integrity()
    assert fixes
    assert s.verify_integrity() == []
    assert reload(store_path).verify_integrity() == []
