from .sweeps import build_sweeps_router, resolve_sweep_owner_key
from .sweeps_ws import build_sweeps_ws_router

__all__ = [
    "build_sweeps_router",
    "build_sweeps_ws_router",
    "resolve_sweep_owner_key",
]
