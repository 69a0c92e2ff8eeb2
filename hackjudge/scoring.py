from __future__ import annotations

import logging
from datetime import datetime, timezone
from numbers import Real
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from hackjudge.errors import NotFoundError, ValidationError
from hackjudge.membership import evaluation_status, is_assigned
from hackjudge.models import Criterion, Evaluation, Judge, Team, TeamResult
from hackjudge.store import EntityStore

logger = logging.getLogger(__name__)

SCORE_FIELD_PREFIX = "score__"


def utc_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="seconds")


# -----------------------
# Evaluation writer
# -----------------------
def validate_scores(criteria: Sequence[Criterion], scores: Mapping[str, object]) -> Dict[str, float]:
    """
    Check a criterion-key -> score mapping against the rubric.

    Every criterion must be scored, no unknown keys are accepted, and each
    score must be a finite number in [0, max_score]. Out-of-range values are
    rejected rather than clamped.
    """
    known = {c.key for c in criteria}
    unknown = sorted(set(scores) - known)
    if unknown:
        raise ValidationError(f"Unknown criteria: {', '.join(unknown)}.")

    clean: Dict[str, float] = {}
    for c in criteria:
        if c.key not in scores:
            raise ValidationError(f"Missing score for {c.name}.")
        v = scores[c.key]
        if isinstance(v, bool) or not isinstance(v, Real) or not np.isfinite(float(v)):
            raise ValidationError(f"Invalid score for {c.name}: {v!r}.")
        if v < 0 or v > c.max_score:
            raise ValidationError(f"Score out of range for {c.name}: {v} (allowed 0-{c.max_score:g}).")
        clean[c.key] = float(v)
    return clean


def parse_score_form(criteria: Sequence[Criterion], form: Mapping[str, object]) -> Dict[str, float]:
    """Turn submitted `score__<key>` form fields into numbers."""
    scores: Dict[str, float] = {}
    for c in criteria:
        key = f"{SCORE_FIELD_PREFIX}{c.key}"
        if key not in form:
            raise ValidationError(f"Missing score for {c.name}.")
        try:
            scores[c.key] = float(str(form[key]).strip())
        except ValueError:
            raise ValidationError(f"Invalid score for {c.name}.") from None
    return scores


def submit_evaluation(
    store: EntityStore,
    judge_id: str,
    team_id: str,
    scores: Mapping[str, object],
    comments: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Evaluation:
    """Validate one judge's scores for one team and upsert the evaluation."""
    judge = store.get_judge(judge_id)
    if judge is None:
        raise NotFoundError(f"Judge '{judge_id}' not found.")
    if store.get_team(team_id) is None:
        raise NotFoundError(f"Team '{team_id}' not found.")
    if not is_assigned(judge, team_id, store.teams):
        raise ValidationError(f"Judge '{judge.name}' is not assigned to team '{team_id}'.")

    clean = validate_scores(store.criteria, scores)
    comments = (comments or "").strip() or None

    evaluation = store.put_evaluation(
        Evaluation(
            team_id=team_id,
            judge_id=judge_id,
            scores=clean,
            comments=comments,
            total_score=sum(clean.values()),
            submitted_at=utc_timestamp(now),
        )
    )
    logger.info("Judge %s scored team %s: %g", judge_id, team_id, evaluation.total_score)
    return evaluation


# -----------------------
# Aggregation -> ranking
# -----------------------
def calculate_final_scores(all_teams: Sequence[Team], all_evaluations: Sequence[Evaluation]) -> List[TeamResult]:
    """
    Sum every judge's evaluation total per team (a sum, not an average).

    Returns one result per team in the order given; teams without
    evaluations get a total of 0 and an empty breakdown.
    """
    team_ids = [t.id for t in all_teams]
    frame = pd.DataFrame(
        {
            "team_id": [e.team_id for e in all_evaluations],
            "total_score": [float(e.total_score) for e in all_evaluations],
        },
        columns=["team_id", "total_score"],
    )
    totals = frame.groupby("team_id")["total_score"].sum().reindex(team_ids, fill_value=0.0)

    by_team: Dict[str, List[Evaluation]] = {tid: [] for tid in team_ids}
    for e in all_evaluations:
        if e.team_id in by_team:
            by_team[e.team_id].append(e)

    return [
        TeamResult(team=t, total_score=float(totals[t.id]), evaluations=by_team[t.id])
        for t in all_teams
    ]


def rank_teams(results: Sequence[TeamResult], descending: bool = True) -> List[TeamResult]:
    """
    Order results by total score and number them from 1.

    Ties keep their incoming order in both directions.
    """
    if not results:
        return []
    order = pd.DataFrame(
        {
            "TotalScore": [r.total_score for r in results],
            "Position": range(len(results)),
        }
    ).sort_values(by=["TotalScore", "Position"], ascending=[not descending, True], kind="mergesort")

    return [
        results[pos].model_copy(update={"rank": rank})
        for rank, pos in enumerate(order["Position"].tolist(), start=1)
    ]


SUMMARY_COLUMNS = ["Rank", "Team", "Project", "TotalScore", "Evaluations", "Completed", "Judges", "Percentage"]


def judge_column(judge: Judge) -> str:
    return f"{judge.name} ({judge.id})"


def results_frame(
    ranked: Sequence[TeamResult], all_judges: Sequence[Judge], all_evaluations: Sequence[Evaluation]
) -> pd.DataFrame:
    """
    Flatten ranked results for export.

    Columns: Rank, Team, Project, TotalScore, Evaluations, Completed, Judges,
    Percentage, then one "<name> (<id>)" column per judge holding that judge's
    total (blank when the judge has not scored the team).
    """
    summary = []
    per_judge = []
    for r in ranked:
        status = evaluation_status(r.team.id, all_judges, all_evaluations)
        summary.append(
            [
                r.rank,
                r.team.name,
                r.team.project_name,
                r.total_score,
                len(r.evaluations),
                status.completed,
                status.total,
                status.percentage,
            ]
        )
        per_judge.append({e.judge_id: e.total_score for e in r.evaluations})

    # judge ids are unique, so judge columns never collide with each other or the summary
    judges = pd.DataFrame(
        {judge_column(j): [scored.get(j.id) for scored in per_judge] for j in all_judges},
        index=range(len(ranked)),
        dtype=float,
    )
    return pd.concat([pd.DataFrame(summary, columns=SUMMARY_COLUMNS), judges], axis=1)
