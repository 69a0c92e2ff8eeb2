from __future__ import annotations

import threading

import pytest

from conftest import full_scores
from hackjudge.db import MemoryStorage
from hackjudge.errors import NotFoundError, StorageError, ValidationError
from hackjudge.models import Judge, Team
from hackjudge.scoring import submit_evaluation
from hackjudge.store import EntityStore


class FlakyStorage(MemoryStorage):
    def __init__(self):
        super().__init__()
        self.fail_on = set()

    def set(self, name, records):
        if name in self.fail_on:
            raise StorageError(f"disk full while writing {name}")
        super().set(name, records)


def _score_everything(store):
    for judge_id, team_id in (("jA", "t1"), ("jA", "t2"), ("jA", "t3"), ("jB", "t2"), ("jB", "t3")):
        submit_evaluation(store, judge_id, team_id, full_scores())


def test_lookups_return_none_when_absent(store):
    assert store.get_team("nope") is None
    assert store.get_judge("nope") is None
    assert store.get_evaluation("jA", "t1") is None
    assert store.find_judge_by_email("B@Example.com").id == "jB"
    assert store.find_judge_by_email("x@example.com") is None


def test_mutations_write_through(store, storage):
    store.add_team(Team(id="t4", name="Delta", project_name="P", members=["x"]))
    submit_evaluation(store, "jA", "t4", full_scores())

    reloaded = EntityStore(storage)
    reloaded.load()
    assert [t.id for t in reloaded.teams] == ["t1", "t2", "t3", "t4"]
    assert reloaded.get_evaluation("jA", "t4").total_score == 50


def test_remove_team_cascades(store, storage):
    _score_everything(store)
    removed = store.remove_team("t2")

    assert removed == 2
    assert store.get_team("t2") is None
    assert store.evaluations_for_team("t2") == []
    assert all(e["team_id"] != "t2" for e in storage.get("evaluations"))
    assert store.get_judge("jB").assigned_teams == ["t3"]


def test_remove_judge_cascades(store, storage):
    _score_everything(store)
    removed = store.remove_judge("jA")

    assert removed == 3
    assert store.evaluations_for_judge("jA") == []
    assert len(storage.get("evaluations")) == 2
    assert [j["id"] for j in storage.get("judges")] == ["jB"]


def test_remove_missing_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.remove_team("nope")
    with pytest.raises(NotFoundError):
        store.remove_judge("nope")


def test_duplicate_ids_rejected(store):
    with pytest.raises(ValidationError):
        store.add_team(Team(id="t1", name="Again", project_name="P", members=[]))
    with pytest.raises(ValidationError):
        store.add_judge(Judge(id="jA", name="Again", email="z@example.com"))


def test_update_team_and_judge(store):
    store.update_team(Team(id="t1", name="Renamed", project_name="P", members=["a"]))
    assert store.get_team("t1").name == "Renamed"
    store.update_judge(Judge(id="jA", name="A", email="a@example.com", assigned_teams=["t1"]))
    assert store.get_judge("jA").assigned_teams == ["t1"]
    with pytest.raises(NotFoundError):
        store.update_team(Team(id="zz", name="n", project_name="p", members=[]))


def test_replace_judges_drops_evaluations_of_missing_judges(store):
    _score_everything(store)
    store.replace_judges([Judge(id="jB", name="Judge B", email="b@example.com")])
    assert {e.judge_id for e in store.evaluations} == {"jB"}


def test_replace_teams_drops_evaluations_of_missing_teams(store, teams):
    _score_everything(store)
    store.replace_teams([teams[0]])
    assert {e.team_id for e in store.evaluations} == {"t1"}
    # jB's only assignments are gone; the stale list keeps it assigned to nothing
    assert store.get_judge("jB").assigned_teams == ["t2", "t3"]


def test_reset_evaluations(store):
    _score_everything(store)
    assert store.reset_evaluations() == 5
    assert store.evaluations == []


def test_failed_write_restores_memory():
    storage = FlakyStorage()
    store = EntityStore(storage)
    store.load()
    store.replace_teams([Team(id="t1", name="A", project_name="P", members=[])])
    store.replace_judges([Judge(id="j1", name="J", email="j@example.com")])
    submit_evaluation(store, "j1", "t1", full_scores())

    storage.fail_on = {"teams"}
    with pytest.raises(StorageError):
        store.remove_team("t1")

    # evaluations were written before teams failed; both sides are back to the old state
    assert store.get_team("t1") is not None
    assert len(store.evaluations) == 1
    assert len(storage.get("evaluations")) == 1
    assert [t["id"] for t in storage.get("teams")] == ["t1"]


def test_failed_evaluation_write_leaves_no_partial_state():
    storage = FlakyStorage()
    store = EntityStore(storage)
    store.load()
    store.replace_teams([Team(id="t1", name="A", project_name="P", members=[])])
    store.replace_judges([Judge(id="j1", name="J", email="j@example.com")])

    storage.fail_on = {"evaluations"}
    with pytest.raises(StorageError):
        submit_evaluation(store, "j1", "t1", full_scores())
    assert store.evaluations == []


def test_load_rejects_malformed_records():
    storage = MemoryStorage({"teams": [{"id": "t1", "name": "A"}]})
    with pytest.raises(StorageError):
        EntityStore(storage).load()


class StallingStorage(MemoryStorage):
    """Blocks the first evaluations write until released, then fails it."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()
        self.armed = False
        self.stalled = False

    def set(self, name, records):
        if name == "evaluations" and self.armed and not self.stalled:
            self.stalled = True
            self.entered.set()
            self.release.wait(5)
            raise StorageError("write timed out")
        super().set(name, records)


def test_concurrent_submissions_keep_memory_and_storage_consistent():
    storage = StallingStorage()
    store = EntityStore(storage)
    store.load()
    store.replace_teams([Team(id=t, name=t, project_name="P", members=[]) for t in ("t1", "t2")])
    store.replace_judges([Judge(id=j, name=j, email=f"{j}@example.com") for j in ("j1", "j2")])
    storage.armed = True

    errors = []

    def first():
        try:
            submit_evaluation(store, "j1", "t1", full_scores())
        except StorageError as e:
            errors.append(e)

    def second():
        submit_evaluation(store, "j2", "t2", full_scores())

    a = threading.Thread(target=first)
    a.start()
    assert storage.entered.wait(5)
    b = threading.Thread(target=second)
    b.start()
    b.join(0.2)
    storage.release.set()
    a.join(5)
    b.join(5)

    assert len(errors) == 1
    in_memory = [(e.judge_id, e.team_id) for e in store.evaluations]
    durable = [(e["judge_id"], e["team_id"]) for e in storage.get("evaluations")]
    assert in_memory == durable == [("j2", "t2")]


def test_duplicate_judge_email_rejected(store):
    with pytest.raises(ValidationError, match="already registered"):
        store.add_judge(Judge(id="jC", name="Judge C", email="A@Example.com"))
    with pytest.raises(ValidationError, match="already registered"):
        store.update_judge(Judge(id="jB", name="Judge B", email="a@example.com"))
    # keeping your own email is fine
    store.update_judge(Judge(id="jB", name="Renamed", email="b@example.com"))
    assert [j.id for j in store.judges] == ["jA", "jB"]


def test_replace_judges_rejects_shared_email(store):
    with pytest.raises(ValidationError, match="more than one judge"):
        store.replace_judges(
            [
                Judge(id="x", name="X", email="same@example.com"),
                Judge(id="y", name="Y", email="SAME@example.com"),
            ]
        )
    assert [j.id for j in store.judges] == ["jA", "jB"]
