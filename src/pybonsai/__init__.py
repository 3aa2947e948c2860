"""pybonsai - In-process tree and flat state stores with async middleware."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pybonsai")
except PackageNotFoundError:
    __version__ = "0+local"
from pybonsai._cache import PathIndexer, all_paths
from pybonsai._paths import ABSENT, normalize_path
from pybonsai.config import StoreConfig
from pybonsai.devlog import DevLog, report
from pybonsai.exceptions import (
    BonsaiConfigError,
    BonsaiError,
    SinkWriteError,
    StageResultError,
)
from pybonsai.factory import create_flat_store, create_store, create_tree_store
from pybonsai.middleware import (
    adapt_middleware,
    async_stage,
    debounce,
    logger,
    persist,
    rate_limit,
    throttle,
    time_window,
    validator,
)
from pybonsai.pipeline import UNCHANGED, MiddlewarePipeline, Replace, Veto
from pybonsai.sinks import HttpSink, JsonFileSink, MemorySink, Sink
from pybonsai.state.events import EventKind, SetOutcome, StoreEvent
from pybonsai.state.flat import FlatStore
from pybonsai.state.tree import PathStore

__all__ = [
    "__version__",
    "ABSENT",
    "BonsaiConfigError",
    "BonsaiError",
    "DevLog",
    "EventKind",
    "FlatStore",
    "HttpSink",
    "JsonFileSink",
    "MemorySink",
    "MiddlewarePipeline",
    "PathIndexer",
    "PathStore",
    "Replace",
    "SetOutcome",
    "Sink",
    "SinkWriteError",
    "StageResultError",
    "StoreConfig",
    "StoreEvent",
    "UNCHANGED",
    "Veto",
    "adapt_middleware",
    "all_paths",
    "async_stage",
    "create_flat_store",
    "create_store",
    "create_tree_store",
    "debounce",
    "logger",
    "normalize_path",
    "persist",
    "rate_limit",
    "report",
    "throttle",
    "time_window",
    "validator",
]
