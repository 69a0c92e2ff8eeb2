from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from hackjudge.errors import NotFoundError, StorageError, ValidationError
from hackjudge.models import CRITERIA, Criterion, Evaluation, Judge, Team

logger = logging.getLogger(__name__)


class EntityStore:
    """
    Owns the teams, judges and evaluations collections.

    Every mutation is written through to the storage collaborator before it
    returns. If the write fails, the in-memory collections are put back the
    way they were and the StorageError propagates.

    Request handlers run on a thread pool, so mutations are serialized on one
    lock held from the precondition checks until the write (or rollback) is
    done.
    """

    def __init__(self, storage, criteria: Sequence[Criterion] = CRITERIA):
        self.storage = storage
        self.criteria: Tuple[Criterion, ...] = tuple(criteria)
        self._teams: List[Team] = []
        self._judges: List[Judge] = []
        self._evaluations: List[Evaluation] = []
        self._lock = threading.RLock()

    # -----------------------
    # Lifecycle
    # -----------------------
    def load(self) -> None:
        with self._lock:
            try:
                teams = [Team.model_validate(r) for r in self.storage.get("teams")]
                judges = [Judge.model_validate(r) for r in self.storage.get("judges")]
                evaluations = [Evaluation.model_validate(r) for r in self.storage.get("evaluations")]
            except PydanticValidationError as e:
                raise StorageError(f"Stored records are malformed: {e.errors()[0]['msg']}") from e
            self._teams, self._judges, self._evaluations = teams, judges, evaluations
        logger.info("Loaded %d teams, %d judges, %d evaluations", len(teams), len(judges), len(evaluations))

    def flush(self) -> None:
        with self._lock:
            for name in ("teams", "judges", "evaluations"):
                self._write(name)

    def _write(self, name: str) -> None:
        records = getattr(self, f"_{name}")
        self.storage.set(name, [r.model_dump() for r in records])

    @contextmanager
    def _mutation(self, *names: str) -> Iterator[None]:
        # callers already hold the lock; re-entering keeps this safe on its own too
        with self._lock:
            snapshot = {n: list(getattr(self, f"_{n}")) for n in ("teams", "judges", "evaluations")}
            try:
                yield
            except Exception:
                for n, records in snapshot.items():
                    setattr(self, f"_{n}", records)
                raise

            written = []
            try:
                for name in names:
                    self._write(name)
                    written.append(name)
            except StorageError:
                for n, records in snapshot.items():
                    setattr(self, f"_{n}", records)
                for name in written:
                    try:
                        self._write(name)
                    except StorageError as e:
                        logger.error("Could not restore %s after failed write: %s", name, e)
                raise

    # -----------------------
    # Reads
    # -----------------------
    @property
    def teams(self) -> List[Team]:
        return list(self._teams)

    @property
    def judges(self) -> List[Judge]:
        return list(self._judges)

    @property
    def evaluations(self) -> List[Evaluation]:
        return list(self._evaluations)

    def get_team(self, team_id: str) -> Optional[Team]:
        return next((t for t in self._teams if t.id == team_id), None)

    def get_judge(self, judge_id: str) -> Optional[Judge]:
        return next((j for j in self._judges if j.id == judge_id), None)

    def find_judge_by_email(self, email: str) -> Optional[Judge]:
        email = email.strip().lower()
        return next((j for j in self._judges if j.email.lower() == email), None)

    def get_evaluation(self, judge_id: str, team_id: str) -> Optional[Evaluation]:
        return next(
            (e for e in self._evaluations if e.judge_id == judge_id and e.team_id == team_id),
            None,
        )

    def evaluations_for_team(self, team_id: str) -> List[Evaluation]:
        return [e for e in self._evaluations if e.team_id == team_id]

    def evaluations_for_judge(self, judge_id: str) -> List[Evaluation]:
        return [e for e in self._evaluations if e.judge_id == judge_id]

    # -----------------------
    # Teams
    # -----------------------
    def add_team(self, team: Team) -> Team:
        with self._lock:
            if self.get_team(team.id):
                raise ValidationError(f"Team id '{team.id}' already exists.")
            with self._mutation("teams"):
                self._teams.append(team)
        logger.info("Added team %s (%s)", team.id, team.name)
        return team

    def update_team(self, team: Team) -> Team:
        with self._lock:
            idx = next((i for i, t in enumerate(self._teams) if t.id == team.id), None)
            if idx is None:
                raise NotFoundError(f"Team '{team.id}' not found.")
            with self._mutation("teams"):
                self._teams[idx] = team
        return team

    def remove_team(self, team_id: str) -> int:
        """Delete a team together with its evaluations; returns how many evaluations went with it."""
        with self._lock:
            if not self.get_team(team_id):
                raise NotFoundError(f"Team '{team_id}' not found.")
            before = len(self._evaluations)
            with self._mutation("evaluations", "judges", "teams"):
                self._evaluations = [e for e in self._evaluations if e.team_id != team_id]
                self._judges = [self._unassign(j, {team_id}) for j in self._judges]
                self._teams = [t for t in self._teams if t.id != team_id]
            removed = before - len(self._evaluations)
        logger.info("Removed team %s and %d evaluations", team_id, removed)
        return removed

    def replace_teams(self, teams: Sequence[Team]) -> None:
        """Swap the whole team collection; evaluations of teams that are gone are dropped."""
        keep = {t.id for t in teams}
        with self._lock:
            dropped = {t.id for t in self._teams} - keep
            with self._mutation("evaluations", "judges", "teams"):
                self._evaluations = [e for e in self._evaluations if e.team_id in keep]
                self._judges = [self._unassign(j, dropped) for j in self._judges]
                self._teams = list(teams)
        logger.info("Uploaded %d teams", len(teams))

    @staticmethod
    def _unassign(judge: Judge, team_ids: set) -> Judge:
        if not judge.assigned_teams or not team_ids.intersection(judge.assigned_teams):
            return judge
        remaining = [t for t in judge.assigned_teams if t not in team_ids]
        if not remaining:
            # an empty list means every team; keep the stale ids so the judge stays assigned to none
            return judge
        return judge.model_copy(update={"assigned_teams": remaining})

    # -----------------------
    # Judges
    # -----------------------
    def _check_email_free(self, judge: Judge) -> None:
        other = self.find_judge_by_email(judge.email)
        if other is not None and other.id != judge.id:
            raise ValidationError(f"Email '{judge.email}' is already registered to judge '{other.name}'.")

    def add_judge(self, judge: Judge) -> Judge:
        with self._lock:
            if self.get_judge(judge.id):
                raise ValidationError(f"Judge id '{judge.id}' already exists.")
            self._check_email_free(judge)
            with self._mutation("judges"):
                self._judges.append(judge)
        logger.info("Added judge %s (%s)", judge.id, judge.email)
        return judge

    def update_judge(self, judge: Judge) -> Judge:
        with self._lock:
            idx = next((i for i, j in enumerate(self._judges) if j.id == judge.id), None)
            if idx is None:
                raise NotFoundError(f"Judge '{judge.id}' not found.")
            self._check_email_free(judge)
            with self._mutation("judges"):
                self._judges[idx] = judge
        return judge

    def remove_judge(self, judge_id: str) -> int:
        with self._lock:
            if not self.get_judge(judge_id):
                raise NotFoundError(f"Judge '{judge_id}' not found.")
            before = len(self._evaluations)
            with self._mutation("evaluations", "judges"):
                self._evaluations = [e for e in self._evaluations if e.judge_id != judge_id]
                self._judges = [j for j in self._judges if j.id != judge_id]
            removed = before - len(self._evaluations)
        logger.info("Removed judge %s and %d evaluations", judge_id, removed)
        return removed

    def replace_judges(self, judges: Sequence[Judge]) -> None:
        seen = set()
        for judge in judges:
            email = judge.email.lower()
            if email in seen:
                raise ValidationError(f"Email '{judge.email}' is used by more than one judge.")
            seen.add(email)

        keep = {j.id for j in judges}
        with self._lock:
            with self._mutation("evaluations", "judges"):
                self._evaluations = [e for e in self._evaluations if e.judge_id in keep]
                self._judges = list(judges)
        logger.info("Uploaded %d judges", len(judges))

    # -----------------------
    # Evaluations
    # -----------------------
    def put_evaluation(self, evaluation: Evaluation) -> Evaluation:
        """Create or replace the evaluation for (judge_id, team_id), keeping the existing id and position."""
        with self._lock:
            idx = next(
                (
                    i
                    for i, e in enumerate(self._evaluations)
                    if e.judge_id == evaluation.judge_id and e.team_id == evaluation.team_id
                ),
                None,
            )
            with self._mutation("evaluations"):
                if idx is None:
                    self._evaluations.append(evaluation)
                else:
                    evaluation = evaluation.model_copy(update={"id": self._evaluations[idx].id})
                    self._evaluations[idx] = evaluation
        return evaluation

    def reset_evaluations(self) -> int:
        with self._lock:
            count = len(self._evaluations)
            with self._mutation("evaluations"):
                self._evaluations = []
        logger.info("Reset %d evaluations", count)
        return count
