from __future__ import annotations

from hackjudge.membership import (
    assigned_teams,
    evaluation_status,
    is_assigned,
    judge_history,
    judge_workload,
    overall_progress,
)
from hackjudge.models import Evaluation, Judge


def _evaluation(judge_id, team_id, total=50.0):
    return Evaluation(
        judge_id=judge_id,
        team_id=team_id,
        scores={"innovation": total},
        total_score=total,
        submitted_at="2024-01-01T00:00:00+00:00",
    )


def test_unassigned_judge_sees_every_team(teams):
    for judge in (
        Judge(name="n", email="e@x.io"),
        Judge(name="n", email="e@x.io", assigned_teams=[]),
    ):
        assert assigned_teams(judge, teams) == teams


def test_assignment_subset_keeps_team_order(teams):
    judge = Judge(name="n", email="e@x.io", assigned_teams=["t3", "t1", "missing"])
    assert [t.id for t in assigned_teams(judge, teams)] == ["t1", "t3"]
    assert is_assigned(judge, "t3", teams)
    assert not is_assigned(judge, "t2", teams)


def test_assigned_teams_does_not_mutate_input(teams):
    judge = Judge(name="n", email="e@x.io", assigned_teams=["t2"])
    before = list(teams)
    assigned_teams(judge, teams)
    assert teams == before
    assert judge.assigned_teams == ["t2"]


def test_status_without_judges_is_zero():
    status = evaluation_status("t1", [], [])
    assert (status.completed, status.total, status.percentage) == (0, 0, 0)


def test_status_complete_when_every_judge_scored(judges):
    evaluations = [_evaluation("jA", "t2"), _evaluation("jB", "t2"), _evaluation("jA", "t1")]
    status = evaluation_status("t2", judges, evaluations)
    assert (status.completed, status.total, status.percentage) == (2, 2, 100)


def test_status_counts_against_all_judges(judges):
    # jB is not assigned t1 but still counts in the denominator
    status = evaluation_status("t1", judges, [_evaluation("jA", "t1")])
    assert (status.completed, status.total, status.percentage) == (1, 2, 50)


def test_status_rounds_half_up():
    panel = [Judge(id=f"j{i}", name="n", email=f"{i}@x.io") for i in range(8)]
    evaluations = [_evaluation("j0", "t1")]
    # 1/8 = 12.5%
    assert evaluation_status("t1", panel, evaluations).percentage == 13


def test_workload_only_counts_assigned_teams(teams, judges):
    judge_b = judges[1]
    evaluations = [_evaluation("jB", "t2"), _evaluation("jB", "t1"), _evaluation("jA", "t3")]
    workload = judge_workload(judge_b, teams, evaluations)
    assert (workload.assigned, workload.completed, workload.remaining) == (2, 1, 1)


def test_workload_for_unassigned_judge(teams, judges):
    workload = judge_workload(judges[0], teams, [_evaluation("jA", "t1")])
    assert (workload.assigned, workload.completed, workload.remaining) == (3, 1, 2)


def test_overall_progress(teams, judges):
    progress = overall_progress(teams, judges, [_evaluation("jA", "t1"), _evaluation("jB", "t2")])
    assert progress == {"submitted": 2, "expected": 6, "percentage": 33}
    assert overall_progress([], [], [])["percentage"] == 0


def test_judge_history_newest_first_regardless_of_assignment():
    older = _evaluation("jB", "t1").model_copy(update={"submitted_at": "2024-01-01T09:00:00+00:00"})
    newer = _evaluation("jB", "t2").model_copy(update={"submitted_at": "2024-01-01T10:00:00+00:00"})
    other = _evaluation("jA", "t3")

    history = judge_history("jB", [older, other, newer])
    assert [e.team_id for e in history] == ["t2", "t1"]
    assert judge_history("nobody", [older, other, newer]) == []
