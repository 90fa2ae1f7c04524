from .sweeps import SweepsApiModule, build_sweeps_api_module, run_archive_compression_loop
from .sweeps_metrics import SweepMetrics

__all__ = [
    "SweepMetrics",
    "SweepsApiModule",
    "build_sweeps_api_module",
    "run_archive_compression_loop",
]
