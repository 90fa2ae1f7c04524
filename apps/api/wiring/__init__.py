from .modules import (
    SweepMetrics,
    SweepsApiModule,
    build_sweeps_api_module,
    run_archive_compression_loop,
)

__all__ = [
    "SweepMetrics",
    "SweepsApiModule",
    "build_sweeps_api_module",
    "run_archive_compression_loop",
]
