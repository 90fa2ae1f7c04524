from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from optisweep.contexts.sweeps.application.services import MAX_VALUES_PER_KEY_DEFAULT
from optisweep.contexts.sweeps.application.use_cases import STREAM_BATCH_SIZE_DEFAULT

_ENV_NAME_KEY = "OPTISWEEP_ENV"
_SWEEPS_CONFIG_PATH_KEY = "OPTISWEEP_SWEEPS_CONFIG"
_ALLOWED_ENVS = ("dev", "prod", "test")

_CELL_TIMEOUT_SECONDS_DEFAULT = 20.0
_DISPATCH_DELAY_SECONDS_DEFAULT = 0.5
_SUBSCRIBER_QUEUE_SIZE_DEFAULT = 1000
_ARCHIVE_DIRECTORY_DEFAULT = "results"
_ARCHIVE_RETENTION_DAYS_DEFAULT = 15
_ARCHIVE_COMPRESS_INTERVAL_SECONDS_DEFAULT = 86400
_PROVIDER_CONNECT_TIMEOUT_SECONDS_DEFAULT = 15.0


@dataclass(frozen=True, slots=True)
class SweepsGeneratorRuntimeConfig:
    """
    Parameter-space expansion limits loaded from `sweeps.generator`.

    Related:
      - configs/dev/sweeps.yaml
      - src/optisweep/contexts/sweeps/application/services/parameter_space_v1.py
    """

    max_values_per_key: int = MAX_VALUES_PER_KEY_DEFAULT

    def __post_init__(self) -> None:
        if self.max_values_per_key <= 0:
            raise ValueError("sweeps.generator.max_values_per_key must be > 0")


@dataclass(frozen=True, slots=True)
class SweepsExecutorRuntimeConfig:
    """
    Executor timing policy loaded from `sweeps.executor`.

    Related:
      - configs/dev/sweeps.yaml
      - src/optisweep/contexts/sweeps/application/services/sweep_executor_v1.py
    """

    cell_timeout_seconds: float = _CELL_TIMEOUT_SECONDS_DEFAULT
    dispatch_delay_seconds: float = _DISPATCH_DELAY_SECONDS_DEFAULT
    announce_pending_cells: bool = True

    def __post_init__(self) -> None:
        """
        Validate executor timing values.

        Args:
            None.
        Returns:
            None.
        Assumptions:
            Zero dispatch delay is allowed (tests), zero cell timeout is not.
        Raises:
            ValueError: If one timing value is out of range.
        Side Effects:
            None.
        """
        if self.cell_timeout_seconds <= 0.0:
            raise ValueError("sweeps.executor.cell_timeout_seconds must be > 0")
        if self.dispatch_delay_seconds < 0.0:
            raise ValueError("sweeps.executor.dispatch_delay_seconds must be >= 0")


@dataclass(frozen=True, slots=True)
class SweepsHubRuntimeConfig:
    subscriber_queue_size: int = _SUBSCRIBER_QUEUE_SIZE_DEFAULT

    def __post_init__(self) -> None:
        if self.subscriber_queue_size <= 0:
            raise ValueError("sweeps.hub.subscriber_queue_size must be > 0")


@dataclass(frozen=True, slots=True)
class SweepsStreamingRuntimeConfig:
    batch_size: int = STREAM_BATCH_SIZE_DEFAULT

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("sweeps.streaming.batch_size must be > 0")


@dataclass(frozen=True, slots=True)
class SweepsArchiveRuntimeConfig:
    """
    Durable job history settings loaded from `sweeps.archive`.

    Related:
      - configs/dev/sweeps.yaml
      - src/optisweep/contexts/sweeps/adapters/outbound/persistence/files/
        file_sweep_job_archive.py
      - apps/api/main/app.py
    """

    enabled: bool = True
    directory: str = _ARCHIVE_DIRECTORY_DEFAULT
    retention_days: int = _ARCHIVE_RETENTION_DAYS_DEFAULT
    compress_interval_seconds: int = _ARCHIVE_COMPRESS_INTERVAL_SECONDS_DEFAULT

    def __post_init__(self) -> None:
        if not self.directory.strip():
            raise ValueError("sweeps.archive.directory must be non-empty")
        if self.retention_days < 0:
            raise ValueError("sweeps.archive.retention_days must be >= 0")
        if self.compress_interval_seconds <= 0:
            raise ValueError("sweeps.archive.compress_interval_seconds must be > 0")


@dataclass(frozen=True, slots=True)
class SweepsProviderRuntimeConfig:
    """
    External evaluation provider endpoint loaded from `sweeps.provider`.

    Related:
      - configs/dev/sweeps.yaml
      - src/optisweep/contexts/sweeps/adapters/outbound/provider/http_backtest_provider.py
    """

    base_url: str | None = None
    connect_timeout_seconds: float = _PROVIDER_CONNECT_TIMEOUT_SECONDS_DEFAULT

    def __post_init__(self) -> None:
        if self.base_url is not None:
            normalized = self.base_url.strip().rstrip("/")
            object.__setattr__(self, "base_url", normalized or None)
        if self.connect_timeout_seconds <= 0.0:
            raise ValueError("sweeps.provider.connect_timeout_seconds must be > 0")


@dataclass(frozen=True, slots=True)
class SweepsRuntimeConfig:
    """
    Root runtime config object for the sweeps bounded context.

    Related:
      - configs/dev/sweeps.yaml
      - configs/test/sweeps.yaml
      - configs/prod/sweeps.yaml
      - apps/api/wiring/modules/sweeps.py
    """

    version: int
    generator: SweepsGeneratorRuntimeConfig = field(default_factory=SweepsGeneratorRuntimeConfig)
    executor: SweepsExecutorRuntimeConfig = field(default_factory=SweepsExecutorRuntimeConfig)
    hub: SweepsHubRuntimeConfig = field(default_factory=SweepsHubRuntimeConfig)
    streaming: SweepsStreamingRuntimeConfig = field(default_factory=SweepsStreamingRuntimeConfig)
    archive: SweepsArchiveRuntimeConfig = field(default_factory=SweepsArchiveRuntimeConfig)
    provider: SweepsProviderRuntimeConfig = field(default_factory=SweepsProviderRuntimeConfig)

    def __post_init__(self) -> None:
        if self.version <= 0:
            raise ValueError("sweeps config version must be > 0")


def resolve_sweeps_config_path(
    *,
    environ: Mapping[str, str],
) -> Path:
    """
    Resolve runtime config path using env override precedence contract.

    Related:
      - configs/dev/sweeps.yaml
      - configs/test/sweeps.yaml
      - configs/prod/sweeps.yaml

    Args:
        environ: Runtime environment mapping.
    Returns:
        Path: Resolved `sweeps.yaml` path.
    Assumptions:
        Precedence is `OPTISWEEP_SWEEPS_CONFIG` > `configs/<OPTISWEEP_ENV>/sweeps.yaml`.
    Raises:
        ValueError: If `OPTISWEEP_ENV` value is unsupported.
    Side Effects:
        None.
    """
    override_path = environ.get(_SWEEPS_CONFIG_PATH_KEY, "").strip()
    if override_path:
        return Path(override_path)

    env_name = _resolve_env_name(environ=environ)
    return Path("configs") / env_name / "sweeps.yaml"


def load_sweeps_runtime_config(path: str | Path) -> SweepsRuntimeConfig:
    """
    Load and validate source-of-truth sweeps runtime YAML configuration.

    Related:
      - configs/dev/sweeps.yaml
      - apps/api/wiring/modules/sweeps.py

    Args:
        path: Path to `sweeps.yaml`.
    Returns:
        SweepsRuntimeConfig: Parsed validated config object.
    Assumptions:
        Missing non-required keys fallback to documented defaults; only `version` is required.
    Raises:
        FileNotFoundError: If path does not exist.
        ValueError: If YAML shape or values are invalid.
    Side Effects:
        Reads one UTF-8 YAML file from filesystem.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"sweeps config not found: {config_path}")

    payload = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if not isinstance(payload, Mapping):
        raise ValueError("sweeps config must be mapping at top-level")

    version = _get_int(payload, "version", required=True)
    sweeps_map = _get_mapping(payload, "sweeps", required=False)
    generator_map = _get_mapping(sweeps_map, "generator", required=False)
    executor_map = _get_mapping(sweeps_map, "executor", required=False)
    hub_map = _get_mapping(sweeps_map, "hub", required=False)
    streaming_map = _get_mapping(sweeps_map, "streaming", required=False)
    archive_map = _get_mapping(sweeps_map, "archive", required=False)
    provider_map = _get_mapping(sweeps_map, "provider", required=False)

    return SweepsRuntimeConfig(
        version=version,
        generator=SweepsGeneratorRuntimeConfig(
            max_values_per_key=_get_int_with_default(
                generator_map,
                "max_values_per_key",
                default=MAX_VALUES_PER_KEY_DEFAULT,
            ),
        ),
        executor=SweepsExecutorRuntimeConfig(
            cell_timeout_seconds=_get_float_with_default(
                executor_map,
                "cell_timeout_seconds",
                default=_CELL_TIMEOUT_SECONDS_DEFAULT,
            ),
            dispatch_delay_seconds=_get_float_with_default(
                executor_map,
                "dispatch_delay_seconds",
                default=_DISPATCH_DELAY_SECONDS_DEFAULT,
            ),
            announce_pending_cells=_get_bool_with_default(
                executor_map,
                "announce_pending_cells",
                default=True,
            ),
        ),
        hub=SweepsHubRuntimeConfig(
            subscriber_queue_size=_get_int_with_default(
                hub_map,
                "subscriber_queue_size",
                default=_SUBSCRIBER_QUEUE_SIZE_DEFAULT,
            ),
        ),
        streaming=SweepsStreamingRuntimeConfig(
            batch_size=_get_int_with_default(
                streaming_map,
                "batch_size",
                default=STREAM_BATCH_SIZE_DEFAULT,
            ),
        ),
        archive=SweepsArchiveRuntimeConfig(
            enabled=_get_bool_with_default(archive_map, "enabled", default=True),
            directory=_get_str_with_default(
                archive_map,
                "directory",
                default=_ARCHIVE_DIRECTORY_DEFAULT,
            ),
            retention_days=_get_int_with_default(
                archive_map,
                "retention_days",
                default=_ARCHIVE_RETENTION_DAYS_DEFAULT,
            ),
            compress_interval_seconds=_get_int_with_default(
                archive_map,
                "compress_interval_seconds",
                default=_ARCHIVE_COMPRESS_INTERVAL_SECONDS_DEFAULT,
            ),
        ),
        provider=SweepsProviderRuntimeConfig(
            base_url=_get_optional_str(provider_map, "base_url"),
            connect_timeout_seconds=_get_float_with_default(
                provider_map,
                "connect_timeout_seconds",
                default=_PROVIDER_CONNECT_TIMEOUT_SECONDS_DEFAULT,
            ),
        ),
    )


def _resolve_env_name(*, environ: Mapping[str, str]) -> str:
    """
    Resolve normalized runtime environment name for fallback path generation.

    Args:
        environ: Runtime environment mapping.
    Returns:
        str: One of `dev`, `prod`, or `test`.
    Assumptions:
        Missing `OPTISWEEP_ENV` defaults to `dev`.
    Raises:
        ValueError: If runtime env value is unsupported.
    Side Effects:
        None.
    """
    raw_env_name = environ.get(_ENV_NAME_KEY, "dev").strip().lower()
    if raw_env_name not in _ALLOWED_ENVS:
        raise ValueError(
            f"{_ENV_NAME_KEY} must be one of {_ALLOWED_ENVS}, got {raw_env_name!r}"
        )
    return raw_env_name


def _get_mapping(data: Mapping[str, Any], key: str, *, required: bool) -> Mapping[str, Any]:
    """
    Read nested mapping from YAML payload.

    Args:
        data: Source mapping.
        key: Mapping key.
        required: Whether key is mandatory.
    Returns:
        Mapping[str, Any]: Nested mapping or empty mapping.
    Assumptions:
        Optional missing mapping sections are represented as empty mapping.
    Raises:
        ValueError: If required key missing or value is not mapping.
    Side Effects:
        None.
    """
    value = data.get(key)
    if value is None:
        if required:
            raise ValueError(f"missing required key: {key}")
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"expected mapping at key '{key}', got {type(value).__name__}")
    return value


def _get_bool_with_default(data: Mapping[str, Any], key: str, *, default: bool) -> bool:
    if key not in data:
        return default
    value = data[key]
    if not isinstance(value, bool):
        raise ValueError(f"expected bool at key '{key}', got {type(value).__name__}")
    return value


def _get_int(data: Mapping[str, Any], key: str, *, required: bool) -> int:
    """
    Read integer value from payload while rejecting bools.

    Args:
        data: Source mapping.
        key: Integer key name.
        required: Whether key is mandatory.
    Returns:
        int: Parsed integer value.
    Assumptions:
        Bool values are rejected despite inheriting from `int`.
    Raises:
        ValueError: If missing required key or value type is invalid.
    Side Effects:
        None.
    """
    value = data.get(key)
    if value is None:
        if required:
            raise ValueError(f"missing required key: {key}")
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"expected int at key '{key}', got {type(value).__name__}")
    return value


def _get_int_with_default(data: Mapping[str, Any], key: str, *, default: int) -> int:
    if key not in data:
        return default
    return _get_int(data, key, required=True)


def _get_float_with_default(data: Mapping[str, Any], key: str, *, default: float) -> float:
    """
    Read optional numeric value with explicit fallback default.

    Args:
        data: Source mapping.
        key: Numeric key name.
        default: Fallback value for absent key.
    Returns:
        float: Parsed floating-point value.
    Assumptions:
        Integer values are accepted and converted to float.
    Raises:
        ValueError: If provided value type is invalid.
    Side Effects:
        None.
    """
    if key not in data:
        return default
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"expected float at key '{key}', got {type(value).__name__}")
    return float(value)


def _get_str_with_default(data: Mapping[str, Any], key: str, *, default: str) -> str:
    if key not in data:
        return default
    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"expected str at key '{key}', got {type(value).__name__}")
    return value


def _get_optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"expected str at key '{key}', got {type(value).__name__}")
    return value
