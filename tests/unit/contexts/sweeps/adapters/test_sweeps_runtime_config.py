from __future__ import annotations

from pathlib import Path

import pytest

from optisweep.contexts.sweeps.adapters.outbound import (
    load_sweeps_runtime_config,
    resolve_sweeps_config_path,
)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "sweeps.yaml"
    path.write_text(text, encoding="utf-8")
    return path


@pytest.mark.parametrize("env_name", ["dev", "test", "prod"])
def test_shipped_sweeps_configs_load(env_name: str) -> None:
    """Ensure every shipped environment config parses and validates."""
    path = Path(__file__).resolve().parents[5] / "configs" / env_name / "sweeps.yaml"

    config = load_sweeps_runtime_config(path)

    assert config.version == 1
    assert config.provider.base_url is not None


def test_load_sweeps_runtime_config_applies_defaults(tmp_path: Path) -> None:
    """Ensure only `version` is required and every section falls back to defaults."""
    config = load_sweeps_runtime_config(_write(tmp_path, "version: 1\n"))

    assert config.generator.max_values_per_key == 1000
    assert config.executor.cell_timeout_seconds == 20.0
    assert config.executor.dispatch_delay_seconds == 0.5
    assert config.executor.announce_pending_cells is True
    assert config.hub.subscriber_queue_size == 1000
    assert config.streaming.batch_size == 50
    assert config.archive.enabled is True
    assert config.archive.retention_days == 15
    assert config.provider.base_url is None


def test_load_sweeps_runtime_config_reads_overrides(tmp_path: Path) -> None:
    """Ensure explicit values override defaults and base_url is normalized."""
    config = load_sweeps_runtime_config(
        _write(
            tmp_path,
            "version: 2\n"
            "sweeps:\n"
            "  executor:\n"
            "    cell_timeout_seconds: 5\n"
            "  archive:\n"
            "    enabled: false\n"
            "    directory: /tmp/history\n"
            "  provider:\n"
            "    base_url: 'http://provider:8700/ '\n",
        )
    )

    assert config.version == 2
    assert config.executor.cell_timeout_seconds == 5.0
    assert config.archive.enabled is False
    assert config.archive.directory == "/tmp/history"
    assert config.provider.base_url == "http://provider:8700"


@pytest.mark.parametrize(
    "text",
    [
        "- 1\n",
        "sweeps: {}\n",
        "version: 0\n",
        "version: 1\nsweeps: []\n",
        "version: 1\nsweeps:\n  executor:\n    cell_timeout_seconds: 0\n",
        "version: 1\nsweeps:\n  generator:\n    max_values_per_key: true\n",
        "version: 1\nsweeps:\n  archive:\n    enabled: 'yes'\n",
        "version: 1\nsweeps:\n  hub:\n    subscriber_queue_size: 0\n",
    ],
)
def test_load_sweeps_runtime_config_rejects_invalid_payloads(tmp_path: Path, text: str) -> None:
    """Ensure malformed shapes and out-of-range values fail loudly."""
    with pytest.raises(ValueError):
        load_sweeps_runtime_config(_write(tmp_path, text))


def test_load_sweeps_runtime_config_requires_existing_file(tmp_path: Path) -> None:
    """Ensure a missing file is reported as FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        load_sweeps_runtime_config(tmp_path / "missing.yaml")


def test_resolve_sweeps_config_path_precedence() -> None:
    """Ensure explicit override wins over env-based fallback path."""
    assert resolve_sweeps_config_path(
        environ={"OPTISWEEP_SWEEPS_CONFIG": "/etc/sweeps.yaml", "OPTISWEEP_ENV": "prod"}
    ) == Path("/etc/sweeps.yaml")
    assert resolve_sweeps_config_path(environ={"OPTISWEEP_ENV": "PROD"}) == Path(
        "configs/prod/sweeps.yaml"
    )
    assert resolve_sweeps_config_path(environ={}) == Path("configs/dev/sweeps.yaml")
    with pytest.raises(ValueError):
        resolve_sweeps_config_path(environ={"OPTISWEEP_ENV": "staging"})
