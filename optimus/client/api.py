"""HTTP client for the Optimus submission service."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Tuple, Union

import requests

from ..exceptions import AuthError, ConfigurationError, NetworkError, QuotaError, ServerError, ValidationError
from ..models.models import CheckResult, Competition, SubmissionResult
from ..utils.logger_config import get_logger

logger = get_logger("api_client")

Timeout = Union[float, Tuple[float, float]]

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 30.0


def _is_seconds(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _check_timeout(timeout: Any) -> Timeout:
    """Seconds, or a (connect, read) pair of seconds"""
    if _is_seconds(timeout):
        return timeout
    if isinstance(timeout, (tuple, list)) and len(timeout) == 2 and all(_is_seconds(t) for t in timeout):
        return (timeout[0], timeout[1])
    raise ConfigurationError(f"Invalid timeout {timeout!r}: expected a positive number of seconds")


class OptimusClient:
    """
    Thin wrapper over the service endpoints.

    Each method performs exactly one HTTP request. Failures are mapped onto
    the error taxonomy; nothing is retried.
    """

    def __init__(
        self,
        server_url: str,
        api_key: str,
        timeout: Optional[Timeout] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            server_url: Base URL of the service, e.g. http://localhost:3000
            api_key: Bearer credential
            timeout: Seconds, or a (connect, read) pair
            session: Optional requests session (a new one is created otherwise)
        """
        if not server_url:
            raise ConfigurationError("No server URL configured")
        if not api_key:
            raise ConfigurationError("No API key configured")
        self.server_url = server_url.rstrip("/")
        self.api_key = api_key
        self.timeout = _check_timeout(timeout) if timeout is not None else (DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT)
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.server_url}/{path.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = self._url(path)
        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Request to {url} timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Could not reach {url}: {e}") from e

        payload = self._json(response)
        if 200 <= response.status_code < 300:
            if payload is None:
                raise ServerError(f"Invalid response from {url}: body is not a JSON object", response.status_code)
            return payload

        message = (payload or {}).get("error") or response.text or response.reason or "Unknown error"
        code = (payload or {}).get("code")
        status = response.status_code
        if status == 403 and code == QuotaError.category:
            raise QuotaError(message, status)
        if status in (401, 403):
            raise AuthError(message, status)
        raise ServerError(f"Server returned {status}: {message}", status)

    @staticmethod
    def _json(response: requests.Response) -> Optional[Dict[str, Any]]:
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def check(self, competition_id: Optional[str] = None) -> CheckResult:
        """Ask which format to use and how many attempts remain"""
        params = {"competition": competition_id} if competition_id else None
        data = self._request("GET", "/check", params=params)
        try:
            return CheckResult.from_dict(data)
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise ServerError(f"Malformed check response: {e}") from e

    def submit(self, archive_path: str, competition_id: Optional[str] = None) -> SubmissionResult:
        """Upload one archive as a multipart form"""
        form = {"competition": competition_id} if competition_id else {}
        filename = os.path.basename(archive_path)
        with open(archive_path, "rb") as fh:
            data = self._request(
                "POST",
                "/submit",
                data=form,
                files={"file": (filename, fh, "application/zip")},
            )
        try:
            return SubmissionResult.from_dict(data)
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise ServerError(f"Malformed submit response: {e}") from e

    def list_competitions(self) -> List[Competition]:
        data = self._request("GET", "/competitions")
        try:
            return [Competition.from_dict(item) for item in data.get("competitions", [])]
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise ServerError(f"Malformed competitions response: {e}") from e
