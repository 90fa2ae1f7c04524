from .config import SweepsRuntimeConfig, load_sweeps_runtime_config, resolve_sweeps_config_path
from .persistence import FileSweepJobArchive, InMemorySweepJobRegistry
from .provider import HttpBacktestProvider

__all__ = [
    "FileSweepJobArchive",
    "HttpBacktestProvider",
    "InMemorySweepJobRegistry",
    "SweepsRuntimeConfig",
    "load_sweeps_runtime_config",
    "resolve_sweeps_config_path",
]
