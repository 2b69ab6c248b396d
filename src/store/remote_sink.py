"""Remote HTTP result sink.

This module POSTs committed lab results to the results service. Every
request carries a timeout; any non-2xx answer is a failure.
"""

from __future__ import annotations

from typing import Mapping, Protocol

import requests

from core.constants import DEFAULT_SINK_TIMEOUT_SECONDS, SINK_RESULT_PATH
from core.errors import LabIntakeSinkError, SinkTimeoutError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)


class ResultSink(Protocol):
    """Remote sink contract consumed by the dispatcher."""

    def send(self, payload: Mapping[str, object]) -> int:
        ...


class HttpResultSink:
    """POST JSON payloads to a configured results endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_SINK_TIMEOUT_SECONDS,
        path: str = SINK_RESULT_PATH,
        session: requests.Session | None = None,
    ) -> None:
        self._url = base_url.rstrip("/") + path
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    @property
    def url(self) -> str:
        return self._url

    def send(self, payload: Mapping[str, object]) -> int:
        """POST one payload.

        Args:
            payload: JSON body.

        Returns:
            HTTP status code of the successful response.

        Raises:
            SinkTimeoutError: If the request times out.
            LabIntakeSinkError: For transport errors and non-2xx responses.
        """
        params = {"key": self._api_key} if self._api_key else None
        try:
            response = self._session.post(
                self._url,
                json=dict(payload),
                params=params,
                timeout=self._timeout_seconds,
            )
        except requests.Timeout as error:
            raise SinkTimeoutError(
                f"Result sink at {self._url} did not respond within "
                f"{self._timeout_seconds:g}s. The group will be retried with the file."
            ) from error
        except requests.RequestException as error:
            raise LabIntakeSinkError(
                f"Failed to reach result sink at {self._url}: {error}. "
                "Check LABINTAKE_SINK_URL and network connectivity."
            ) from error
        if not 200 <= response.status_code < 300:
            raise LabIntakeSinkError(
                f"Result sink at {self._url} returned HTTP {response.status_code}: "
                f"{response.text[:200]}"
            )
        _LOGGER.debug("result_sink_accepted", url=self._url, status_code=response.status_code)
        return response.status_code
