"""Test doubles and data helpers for the ExpertDesk test suite."""

from tests.factories.collaborators import (
    FakeContentStore,
    FakeUserDirectory,
    RecordingNotifier,
)
from tests.factories.records import grant, set_score, taxonomy_target

__all__ = [
    "FakeContentStore",
    "FakeUserDirectory",
    "RecordingNotifier",
    "grant",
    "set_score",
    "taxonomy_target",
]
