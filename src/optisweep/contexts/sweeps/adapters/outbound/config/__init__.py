from .sweeps_runtime_config import (
    SweepsArchiveRuntimeConfig,
    SweepsExecutorRuntimeConfig,
    SweepsGeneratorRuntimeConfig,
    SweepsHubRuntimeConfig,
    SweepsProviderRuntimeConfig,
    SweepsRuntimeConfig,
    SweepsStreamingRuntimeConfig,
    load_sweeps_runtime_config,
    resolve_sweeps_config_path,
)

__all__ = [
    "SweepsArchiveRuntimeConfig",
    "SweepsExecutorRuntimeConfig",
    "SweepsGeneratorRuntimeConfig",
    "SweepsHubRuntimeConfig",
    "SweepsProviderRuntimeConfig",
    "SweepsRuntimeConfig",
    "SweepsStreamingRuntimeConfig",
    "load_sweeps_runtime_config",
    "resolve_sweeps_config_path",
]
