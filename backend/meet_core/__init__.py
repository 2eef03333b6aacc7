"""Scoring, identity and school registry services for the sports meet admin API."""

from .catalog import EventCatalog
from .identity import IdentityService
from .schools import SchoolRegistry
from .scoreboard import Scoreboard, compute_scoreboard
from .scoring import ScoreRecorder
from .store import DataStore

__all__ = [
    "DataStore",
    "EventCatalog",
    "IdentityService",
    "SchoolRegistry",
    "ScoreRecorder",
    "Scoreboard",
    "compute_scoreboard",
]
