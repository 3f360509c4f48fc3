"""Fleet availability and latency probing with a self-refreshing bearer token."""

from .auth import TokenManager, TokenState
from .engine import ProbeEngine, ProbeOutcome, partition
from .orchestrator import RunReport, run_once
from .settings import Config, FileConfigStore
from .storage import SqliteResultStore

__all__ = [
    "Config",
    "FileConfigStore",
    "ProbeEngine",
    "ProbeOutcome",
    "RunReport",
    "SqliteResultStore",
    "TokenManager",
    "TokenState",
    "partition",
    "run_once",
]
