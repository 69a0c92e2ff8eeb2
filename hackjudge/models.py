from __future__ import annotations

import json
import uuid
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic import field_validator

from hackjudge.errors import ValidationError


def new_id() -> str:
    return uuid.uuid4().hex


# -----------------------
# Records
# -----------------------
class Criterion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    key: str
    name: str
    description: str
    max_score: float


class Team(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    name: str
    project_name: str = Field(alias="projectName")
    project_description: str = Field(default="", alias="projectDescription")
    members: List[str]

    @field_validator("name", "project_name")
    @classmethod
    def _required_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("project_description", mode="before")
    @classmethod
    def _description(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("members")
    @classmethod
    def _members(cls, v: List[str]) -> List[str]:
        # blank rows from manual entry are dropped
        return [m.strip() for m in v if m and m.strip()]


class Judge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    name: str
    email: str
    assigned_teams: Optional[List[str]] = Field(default=None, alias="assignedTeams")

    @field_validator("name", "email")
    @classmethod
    def _required_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class Evaluation(BaseModel):
    id: str = Field(default_factory=new_id)
    team_id: str
    judge_id: str
    scores: Dict[str, float]
    comments: Optional[str] = None
    total_score: float
    submitted_at: str


class TeamResult(BaseModel):
    """A team with its aggregated score and the evaluations behind it."""

    team: Team
    total_score: float = 0
    evaluations: List[Evaluation] = Field(default_factory=list)
    rank: Optional[int] = None


class EvaluationStatus(BaseModel):
    completed: int
    total: int
    percentage: int


class JudgeWorkload(BaseModel):
    assigned: int
    completed: int
    remaining: int


class Principal(BaseModel):
    id: str
    role: Literal["admin", "judge"]
    name: Optional[str] = None
    email: Optional[str] = None


# -----------------------
# Rubric
# -----------------------
CRITERIA: Tuple[Criterion, ...] = (
    Criterion(id="1", key="innovation", name="Innovation",
              description="Originality and uniqueness of the idea", max_score=20),
    Criterion(id="2", key="tech_complexity", name="Technical Complexity",
              description="Complexity and sophistication of technical implementation", max_score=20),
    Criterion(id="3", key="design", name="Design",
              description="User interface, experience, and visual appeal", max_score=20),
    Criterion(id="4", key="completion", name="Completion",
              description="Level of completeness and polish", max_score=20),
    Criterion(id="5", key="presentation", name="Presentation",
              description="Quality of presentation and demo", max_score=20),
)

MAX_TOTAL_SCORE = sum(c.max_score for c in CRITERIA)


# -----------------------
# Bulk import
# -----------------------
def load_json_payload(raw: bytes | str) -> Any:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationError("Uploaded file is not UTF-8 text.") from None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Failed to parse JSON file: {e.msg} (line {e.lineno}).") from None


def _describe(err: PydanticValidationError) -> str:
    first = err.errors()[0]
    field = ".".join(str(p) for p in first["loc"]) or "record"
    return f"{field}: {first['msg']}"


def _parse_records(data: Any, model: type, kind: str, required: Tuple[Tuple[str, ...], ...]) -> list:
    if not isinstance(data, list):
        raise ValidationError(f"Uploaded file must contain an array of {kind}s.")

    records = []
    seen = set()
    for idx, item in enumerate(data):
        if not isinstance(item, dict):
            raise ValidationError(f"Invalid {kind} data format at index {idx}: expected an object.")
        for names in required:
            if not any(item.get(n) not in (None, "") for n in names):
                raise ValidationError(f"Invalid {kind} data format at index {idx}: missing '{names[0]}'.")
        payload = dict(item)
        if not payload.get("id"):
            payload.pop("id", None)
        try:
            record = model.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {kind} data format at index {idx}: {_describe(e)}.") from None
        if record.id in seen:
            raise ValidationError(f"Duplicate {kind} id '{record.id}' at index {idx}.")
        seen.add(record.id)
        records.append(record)
    return records


def parse_teams_payload(data: Any) -> List[Team]:
    """
    Validate an externally parsed team list.

    Every element needs a name, a project name and a members list. Any bad
    element rejects the whole payload. Elements without an id get a fresh one.
    """
    return _parse_records(data, Team, "team", (("name",), ("project_name", "projectName"), ("members",)))


def parse_judges_payload(data: Any) -> List[Judge]:
    return _parse_records(data, Judge, "judge", (("name",), ("email",)))
