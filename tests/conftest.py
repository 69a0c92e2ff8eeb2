from __future__ import annotations

import pytest

from hackjudge.db import MemoryStorage
from hackjudge.models import Judge, Team
from hackjudge.store import EntityStore


def full_scores(innovation=10, tech_complexity=10, design=10, completion=10, presentation=10):
    return {
        "innovation": innovation,
        "tech_complexity": tech_complexity,
        "design": design,
        "completion": completion,
        "presentation": presentation,
    }


@pytest.fixture
def teams():
    return [
        Team(id="t1", name="Team Alpha", project_name="EcoTrack", members=["John", "Jane"]),
        Team(id="t2", name="Team Beta", project_name="MedConnect", members=["Mike"]),
        Team(id="t3", name="Team Gamma", project_name="StudyBuddy", members=["Lisa", "Tom"]),
    ]


@pytest.fixture
def judges():
    return [
        Judge(id="jA", name="Judge A", email="a@example.com"),
        Judge(id="jB", name="Judge B", email="b@example.com", assigned_teams=["t2", "t3"]),
    ]


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage, teams, judges) -> EntityStore:
    s = EntityStore(storage)
    s.load()
    s.replace_teams(teams)
    s.replace_judges(judges)
    return s
