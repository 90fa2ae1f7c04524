from __future__ import annotations

import asyncio
import gzip
import json
import time
from pathlib import Path
from typing import Any, Mapping

import pytest
from fastapi.testclient import TestClient

from apps.api.main.app import create_app
from optisweep.contexts.sweeps.application.dto import SweepProviderCredentials

_SESSION_HEADERS = {"X-Session-Id": "sess"}


class _ScriptedPair:
    def __init__(self, *, provider: _ScriptedProvider) -> None:
        self._provider = provider

    async def evaluate(self, *, indicator_id: str, options: Mapping[str, Any], window) -> Any:
        _ = indicator_id, window
        self._provider.evaluations += 1
        if self._provider.delay_seconds:
            await asyncio.sleep(self._provider.delay_seconds)
        if self._provider.fail_on == self._provider.evaluations:
            raise RuntimeError("HTTP 500: engine crashed")
        return {"performance": {"all": {"netProfit": float(options.get("length", 0))}}}

    async def close(self) -> None:
        return None


class _ScriptedClient:
    def __init__(self, *, provider: _ScriptedProvider) -> None:
        self._provider = provider

    async def open_pair(self, *, symbol: str, timeframe: str) -> _ScriptedPair:
        _ = symbol, timeframe
        return _ScriptedPair(provider=self._provider)

    async def close(self) -> None:
        return None


class _ScriptedProvider:
    """
    Provider fake with optional per-cell delay and one scripted failing evaluation.
    """

    def __init__(self, *, delay_seconds: float = 0.0, fail_on: int | None = None) -> None:
        self.delay_seconds = delay_seconds
        self.fail_on = fail_on
        self.evaluations = 0

    async def connect(self, *, credentials: SweepProviderCredentials) -> _ScriptedClient:
        _ = credentials
        return _ScriptedClient(provider=self)


def _client(tmp_path: Path, provider: _ScriptedProvider) -> TestClient:
    config_path = tmp_path / "sweeps.yaml"
    config_path.write_text(
        "version: 1\n"
        "sweeps:\n"
        "  executor:\n"
        "    cell_timeout_seconds: 2.0\n"
        "    dispatch_delay_seconds: 0.0\n"
        "  streaming:\n"
        "    batch_size: 2\n"
        "  archive:\n"
        f"    directory: {tmp_path / 'results'}\n",
        encoding="utf-8",
    )
    app = create_app(environ={"OPTISWEEP_SWEEPS_CONFIG": str(config_path)}, provider=provider)
    return TestClient(app)


def _submit_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "indicatorId": "USER;abc",
        "symbols": ["BINANCE:BTCUSDT"],
        "timeframes": ["60"],
        "baseOptions": {"length": 10, "source": "close"},
        "ranges": {"length": {"active": True, "min": 10, "max": 12, "step": 1}},
        "session": "sess",
        "signature": "sig",
    }
    body.update(overrides)
    return body


def _wait_for_terminal(client: TestClient, job_id: str) -> dict[str, Any]:
    for _ in range(300):
        response = client.get(f"/api/jobs/{job_id}", headers=_SESSION_HEADERS)
        payload = response.json()
        if payload["status"] in ("completed", "failed", "cancelled"):
            return payload
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


def test_submitted_sweep_runs_to_completion_and_is_browsable(tmp_path: Path) -> None:
    """Ensure submit, job read, history list, stream, size and export work end to end."""
    with _client(tmp_path, _ScriptedProvider()) as client:
        submitted = client.post("/api/backtest", json=_submit_body())

        assert submitted.status_code == 200
        assert submitted.json()["message"] == "Backtest started"
        job_id = submitted.json()["jobId"]

        job = _wait_for_terminal(client, job_id)
        assert job["status"] == "completed"
        assert job["resultCount"] == 3
        assert "ownerKey" not in job
        assert [item["options"]["length"] for item in job["results"]] == [10, 11, 12]
        assert job["results"][0]["report"]["netProfit"] == 10.0

        listed = client.get("/api/jobs", headers=_SESSION_HEADERS).json()
        assert [item["id"] for item in listed] == [job_id]
        assert listed[0]["resultCount"] == 3
        assert client.get("/api/jobs", headers={"X-Session-Id": "other"}).json() == []

        stream = client.get(f"/api/jobs/{job_id}/stream", params={"session": "sess"})
        assert stream.headers["content-type"].startswith("text/event-stream")
        events = [
            line.removeprefix("event: ")
            for line in stream.text.splitlines()
            if line.startswith("event: ")
        ]
        assert events == ["metadata", "results", "results", "complete"]

        size = client.get(f"/api/jobs/{job_id}/size", headers=_SESSION_HEADERS).json()
        exported = client.get(f"/api/jobs/{job_id}/export", headers=_SESSION_HEADERS)
        assert exported.status_code == 200
        assert exported.headers["content-type"] == "application/gzip"
        assert f"backtest-{job_id}.json.gz" in exported.headers["content-disposition"]
        assert size == {"compressedSize": len(exported.content), "resultCount": 3}
        assert json.loads(gzip.decompress(exported.content))["id"] == job_id

    assert (tmp_path / "results" / f"{job_id}.json").exists()


def test_failed_cell_stops_job_and_retry_replaces_result(tmp_path: Path) -> None:
    """Ensure fail-fast stops the job and a retry rewrites the failed cell in place."""
    with _client(tmp_path, _ScriptedProvider(fail_on=2)) as client:
        job_id = client.post("/api/backtest", json=_submit_body()).json()["jobId"]

        job = _wait_for_terminal(client, job_id)
        assert job["status"] == "failed"
        assert job["error"] == "HTTP 500: engine crashed"
        assert job["resultCount"] == 2

        retried = client.post(
            "/api/retry-backtest",
            json={
                "jobId": job_id,
                "symbol": "BINANCE:BTCUSDT",
                "timeframe": "60",
                "options": {"length": 11, "source": "close"},
                "session": "sess",
                "signature": "sig",
            },
        )

        assert retried.status_code == 200
        assert retried.json()["success"] is True
        job = client.get(f"/api/jobs/{job_id}", headers=_SESSION_HEADERS).json()
        assert job["status"] == "failed"
        assert job["resultCount"] == 2
        assert "error" not in job["results"][1]
        assert job["results"][1]["report"]["netProfit"] == 11.0


def test_cancel_stops_running_job(tmp_path: Path) -> None:
    """Ensure cancel moves an active job to cancelled and a second cancel is a no-op."""
    with _client(tmp_path, _ScriptedProvider(delay_seconds=0.2)) as client:
        job_id = client.post("/api/backtest", json=_submit_body()).json()["jobId"]

        first = client.post(f"/api/backtest/{job_id}/cancel", headers=_SESSION_HEADERS)
        second = client.post(f"/api/backtest/{job_id}/cancel", headers=_SESSION_HEADERS)

        assert first.json() == {"success": True}
        assert second.json() == {"success": False}
        job = _wait_for_terminal(client, job_id)
        assert job["status"] == "cancelled"
        assert job["resultCount"] < 3


def test_submit_validation_errors(tmp_path: Path) -> None:
    """Ensure malformed submissions return deterministic validation_error payloads."""
    with _client(tmp_path, _ScriptedProvider()) as client:
        both_sources = client.post(
            "/api/backtest",
            json=_submit_body(combinations=[{"length": 10}], ranges=None),
        )
        unknown_field = client.post("/api/backtest", json=_submit_body(extra=True))
        too_large = client.post(
            "/api/backtest",
            json=_submit_body(
                ranges={"length": {"active": True, "min": 0, "max": 5000, "step": 1}}
            ),
        )

    assert both_sources.status_code == 422
    assert both_sources.json()["error"]["code"] == "validation_error"
    paths = [item["path"] for item in both_sources.json()["error"]["details"]["errors"]]
    assert paths == ["combinations"]
    assert unknown_field.status_code == 422
    assert too_large.status_code == 422
    assert too_large.json()["error"]["details"]["key"] == "length"


def test_submit_without_credentials_is_unauthorized(tmp_path: Path) -> None:
    """Ensure submissions missing session or signature are rejected with 401."""
    with _client(tmp_path, _ScriptedProvider()) as client:
        response = client.post("/api/backtest", json=_submit_body(signature=None))

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthorized"


def test_foreign_and_unknown_jobs_are_not_found(tmp_path: Path) -> None:
    """Ensure jobs of other sessions are indistinguishable from missing jobs."""
    with _client(tmp_path, _ScriptedProvider()) as client:
        job_id = client.post("/api/backtest", json=_submit_body()).json()["jobId"]
        _wait_for_terminal(client, job_id)

        foreign = client.get(f"/api/jobs/{job_id}", headers={"X-Session-Id": "other"})
        guest = client.get(f"/api/jobs/{job_id}/size")
        unknown_stream = client.get(
            "/api/jobs/00000000-0000-4000-8000-000000000000/stream",
            headers=_SESSION_HEADERS,
        )

    assert foreign.status_code == 404
    assert foreign.json()["error"]["message"] == "Job not found"
    assert guest.status_code == 404
    assert unknown_stream.status_code == 200
    assert unknown_stream.text == 'event: error\ndata: {"message":"Job not found"}\n\n'


def test_metrics_endpoint_exposes_sweep_counters(tmp_path: Path) -> None:
    """Ensure Prometheus exposition includes sweep submission and completion counters."""
    with _client(tmp_path, _ScriptedProvider()) as client:
        job_id = client.post("/api/backtest", json=_submit_body()).json()["jobId"]
        _wait_for_terminal(client, job_id)

        response = client.get("/metrics")

    assert response.status_code == 200
    assert "sweep_jobs_submitted_total 1.0" in response.text
    assert 'sweep_jobs_finished_total{status="completed"} 1.0' in response.text
    assert 'sweep_cells_evaluated_total{outcome="success"} 3.0' in response.text


@pytest.mark.parametrize("env", [{"OPTISWEEP_ENV": "staging"}])
def test_create_app_fails_fast_on_invalid_environment(env: dict[str, str]) -> None:
    """Ensure config resolution errors surface at app construction."""
    with pytest.raises(ValueError):
        create_app(environ=env, provider=_ScriptedProvider())


def test_submit_with_overflowing_float_range_is_validation_error(tmp_path: Path) -> None:
    """Ensure a float range whose step count overflows is rejected with 422."""
    with _client(tmp_path, _ScriptedProvider()) as client:
        response = client.post(
            "/api/backtest",
            json=_submit_body(
                baseOptions={"mult": 1.0},
                ranges={"mult": {"active": True, "min": 0.0, "max": 1e300, "step": 1e-10}},
            ),
        )

    assert response.status_code == 422
    assert response.json()["error"]["details"] == {"count": None, "key": "mult", "limit": 1000}
