"""Hackathon judging: teams, judges, rubric scoring and rankings."""

__version__ = "0.1.0"
