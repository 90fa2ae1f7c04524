from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping

import requests

from optisweep.contexts.sweeps.application.dto import EvaluationWindow, SweepProviderCredentials
from optisweep.contexts.sweeps.application.ports import (
    BacktestProvider,
    BacktestProviderClient,
    BacktestProviderPairSession,
)
from optisweep.contexts.sweeps.domain.entities import SweepScalar

log = logging.getLogger(__name__)

SessionFactory = Callable[[], requests.Session]
_SESSION_HEADER = "X-Provider-Session"
_SIGNATURE_HEADER = "X-Provider-Signature"
_ERROR_BODY_LIMIT = 500


class HttpBacktestProvider(BacktestProvider):
    """
    JSON-over-HTTP evaluation provider built on `requests`, without internal retries.

    Endpoints (relative to `base_url`):
      - `POST /v1/sessions` -> `{"sessionId"}`; `DELETE /v1/sessions/{sessionId}`
      - `POST /v1/sessions/{sessionId}/pairs` `{symbol, timeframe}` -> `{"pairId"}`
      - `POST /v1/sessions/{sessionId}/pairs/{pairId}/evaluations`
        `{indicatorId, options, from, to}` -> raw report
      - `DELETE /v1/sessions/{sessionId}/pairs/{pairId}`

    Related:
      - src/optisweep/contexts/sweeps/application/ports/backtest_provider.py
      - src/optisweep/contexts/sweeps/adapters/outbound/config/sweeps_runtime_config.py
      - apps/api/wiring/modules/sweeps.py
    """

    def __init__(
        self,
        *,
        base_url: str,
        connect_timeout_seconds: float,
        request_timeout_seconds: float,
        session_factory: SessionFactory | None = None,
    ) -> None:
        """
        Initialize provider endpoint settings.

        Args:
            base_url: Provider root URL.
            connect_timeout_seconds: TCP connect timeout for every request.
            request_timeout_seconds: Read timeout for every request.
            session_factory: Optional `requests.Session` factory.
        Returns:
            None.
        Assumptions:
            Callers bound every awaited call with their own deadline as well.
        Raises:
            ValueError: If URL is blank or timeouts are not positive.
        Side Effects:
            None.
        """
        normalized_url = base_url.strip().rstrip("/")
        if not normalized_url:
            raise ValueError("HttpBacktestProvider requires base_url")
        if connect_timeout_seconds <= 0 or request_timeout_seconds <= 0:
            raise ValueError("HttpBacktestProvider timeouts must be > 0")
        self._base_url = normalized_url
        self._timeout = (connect_timeout_seconds, request_timeout_seconds)
        self._session_factory = session_factory or requests.Session

    async def connect(self, *, credentials: SweepProviderCredentials) -> BacktestProviderClient:
        http = self._authorized_session(credentials=credentials)
        try:
            body = await asyncio.to_thread(
                _request_json,
                http,
                "POST",
                f"{self._base_url}/v1/sessions",
                None,
                self._timeout,
            )
            session_id = _require_str(body=body, key="sessionId")
        except BaseException:
            http.close()
            raise
        log.debug("event=provider_session_opened session_id=%s", session_id)
        return _HttpProviderClient(
            base_url=f"{self._base_url}/v1/sessions/{session_id}",
            http=http,
            credentials=credentials,
            timeout=self._timeout,
            session_factory=self._session_factory,
        )

    def _authorized_session(self, *, credentials: SweepProviderCredentials) -> requests.Session:
        return _authorized_session(factory=self._session_factory, credentials=credentials)


class _HttpProviderClient(BacktestProviderClient):
    def __init__(
        self,
        *,
        base_url: str,
        http: requests.Session,
        credentials: SweepProviderCredentials,
        timeout: tuple[float, float],
        session_factory: SessionFactory,
    ) -> None:
        self._base_url = base_url
        self._http = http
        self._credentials = credentials
        self._timeout = timeout
        self._session_factory = session_factory

    async def open_pair(self, *, symbol: str, timeframe: str) -> BacktestProviderPairSession:
        http = _authorized_session(factory=self._session_factory, credentials=self._credentials)
        try:
            body = await asyncio.to_thread(
                _request_json,
                http,
                "POST",
                f"{self._base_url}/pairs",
                {"symbol": symbol, "timeframe": timeframe},
                self._timeout,
            )
            pair_id = _require_str(body=body, key="pairId")
        except BaseException:
            http.close()
            raise
        return _HttpProviderPairSession(
            base_url=f"{self._base_url}/pairs/{pair_id}",
            http=http,
            timeout=self._timeout,
        )

    async def close(self) -> None:
        try:
            await asyncio.to_thread(
                _request_json,
                self._http,
                "DELETE",
                self._base_url,
                None,
                self._timeout,
            )
        finally:
            self._http.close()


class _HttpProviderPairSession(BacktestProviderPairSession):
    def __init__(
        self,
        *,
        base_url: str,
        http: requests.Session,
        timeout: tuple[float, float],
    ) -> None:
        self._base_url = base_url
        self._http = http
        self._timeout = timeout

    async def evaluate(
        self,
        *,
        indicator_id: str,
        options: Mapping[str, SweepScalar],
        window: EvaluationWindow,
    ) -> Mapping[str, Any]:
        body = await asyncio.to_thread(
            _request_json,
            self._http,
            "POST",
            f"{self._base_url}/evaluations",
            {
                "indicatorId": indicator_id,
                "options": dict(options),
                "from": window.start_ts,
                "to": window.end_ts,
            },
            self._timeout,
        )
        if not isinstance(body, Mapping):
            raise RuntimeError("Provider returned a non-object backtest report")
        return body

    async def close(self) -> None:
        try:
            await asyncio.to_thread(
                _request_json,
                self._http,
                "DELETE",
                self._base_url,
                None,
                self._timeout,
            )
        finally:
            self._http.close()


def _authorized_session(
    *,
    factory: SessionFactory,
    credentials: SweepProviderCredentials,
) -> requests.Session:
    http = factory()
    http.headers.update(
        {
            _SESSION_HEADER: credentials.session,
            _SIGNATURE_HEADER: credentials.signature,
            "Accept": "application/json",
        }
    )
    return http


def _request_json(
    http: requests.Session,
    method: str,
    url: str,
    payload: Mapping[str, Any] | None,
    timeout: tuple[float, float],
) -> Any:
    """
    Perform one blocking JSON request and convert failures into plain runtime errors.

    Args:
        http: Authorized requests session.
        method: HTTP method.
        url: Absolute URL.
        payload: Optional JSON body.
        timeout: `(connect, read)` timeout pair.
    Returns:
        Any: Decoded JSON body, or `None` for empty responses.
    Assumptions:
        Error messages keep the HTTP status so `429` is recognized as rate limiting.
    Raises:
        RuntimeError: On non-2xx status or invalid JSON.
        requests.RequestException: On transport failures.
    Side Effects:
        Performs network I/O.
    """
    response = http.request(method, url, json=payload, timeout=timeout)
    if response.status_code < 200 or response.status_code >= 300:
        raise RuntimeError(f"HTTP {response.status_code}: {_error_text(response=response)}")
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as error:
        snippet = response.text[:_ERROR_BODY_LIMIT]
        raise RuntimeError(f"Invalid JSON from provider: {snippet}") from error


def _error_text(*, response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:_ERROR_BODY_LIMIT]
    if isinstance(body, Mapping):
        message = body.get("error") or body.get("message")
        if isinstance(message, str) and message.strip():
            return message
    return response.text[:_ERROR_BODY_LIMIT]


def _require_str(*, body: Any, key: str) -> str:
    if not isinstance(body, Mapping):
        raise RuntimeError(f"Provider response must be an object with {key!r}")
    value = body.get(key)
    if not isinstance(value, str) or not value.strip():
        raise RuntimeError(f"Provider response is missing {key!r}")
    return value
