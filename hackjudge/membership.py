from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Sequence

from hackjudge.models import Evaluation, EvaluationStatus, Judge, JudgeWorkload, Team


def assigned_teams(judge: Judge, all_teams: Sequence[Team]) -> List[Team]:
    """
    Teams this judge is expected to evaluate, in all_teams order.

    No assignment list (or an empty one) means every team.
    """
    if not judge.assigned_teams:
        return list(all_teams)
    wanted = set(judge.assigned_teams)
    return [t for t in all_teams if t.id in wanted]


def is_assigned(judge: Judge, team_id: str, all_teams: Sequence[Team]) -> bool:
    return any(t.id == team_id for t in assigned_teams(judge, all_teams))


def _percent(part: int, whole: int) -> int:
    if whole == 0:
        return 0
    # half-up, so 0.5 -> 1 rather than banker's rounding
    return int((Decimal(part) * 100 / Decimal(whole)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def evaluation_status(
    team_id: str, all_judges: Sequence[Judge], all_evaluations: Sequence[Evaluation]
) -> EvaluationStatus:
    """Completion of one team's judging, measured against every judge on the panel."""
    completed = len({e.judge_id for e in all_evaluations if e.team_id == team_id})
    total = len(all_judges)
    return EvaluationStatus(completed=completed, total=total, percentage=_percent(completed, total))


def judge_workload(judge: Judge, all_teams: Sequence[Team], all_evaluations: Sequence[Evaluation]) -> JudgeWorkload:
    team_ids = {t.id for t in assigned_teams(judge, all_teams)}
    completed = len({e.team_id for e in all_evaluations if e.judge_id == judge.id and e.team_id in team_ids})
    return JudgeWorkload(assigned=len(team_ids), completed=completed, remaining=len(team_ids) - completed)


def overall_progress(
    all_teams: Sequence[Team], all_judges: Sequence[Judge], all_evaluations: Sequence[Evaluation]
) -> Dict[str, int]:
    expected = len(all_teams) * len(all_judges)
    submitted = len(all_evaluations)
    return {"submitted": submitted, "expected": expected, "percentage": _percent(submitted, expected)}


def judge_history(judge_id: str, all_evaluations: Sequence[Evaluation]) -> List[Evaluation]:
    """Every evaluation this judge has submitted, newest first, whatever the current assignment."""
    mine = [e for e in all_evaluations if e.judge_id == judge_id]
    # ISO-8601 UTC strings sort chronologically; stable, so equal stamps keep store order
    return sorted(mine, key=lambda e: e.submitted_at, reverse=True)
