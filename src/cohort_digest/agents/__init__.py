"""Digest agents for organization and weekly analysis."""

from cohort_digest.agents.content_organizer import ContentOrganizer
from cohort_digest.agents.week_analyzer import WeeklyAnalyzer

__all__ = [
    "ContentOrganizer",
    "WeeklyAnalyzer",
]
