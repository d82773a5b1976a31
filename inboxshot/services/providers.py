from __future__ import annotations

import base64
import json
import logging
import http.client
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional, Sequence, Type

from inboxshot.errors import AuthenticationError, ConfigurationError, SubmissionError
from inboxshot.schemas import ClientReport, ReportedStatus, StatusSnapshot

LOGGER = logging.getLogger("inboxshot.providers")


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


class PreviewProvider:
    """Capability set every rendering backend implements.

    ``fetch_status`` returns ``None`` for a transient failure so the poller can
    tell "no new information" apart from an empty snapshot. Authentication
    failures raise :class:`AuthenticationError` instead.
    """

    name = "base"
    requires_password = False

    def submit_job(self, content: str, subject: str, clients: Sequence[str]) -> str:
        raise NotImplementedError

    def fetch_status(self, job_id: str, timeout: Optional[float] = None) -> Optional[StatusSnapshot]:
        raise NotImplementedError

    def list_clients(self) -> List[str]:
        raise NotImplementedError


class EmailOnAcidProvider(PreviewProvider):
    name = "emailonacid"
    requires_password = True

    BASE_URL = "https://api.emailonacid.com"
    SUCCESS_STATUSES = {"Complete"}
    FAILURE_STATUSES = {"Failed": ReportedStatus.failed, "Bounced": ReportedStatus.bounced}

    def __init__(
        self,
        api_key: str,
        password: Optional[str],
        *,
        base_url: Optional[str] = None,
        submit_timeout: float = 60.0,
    ) -> None:
        if not api_key or not password:
            raise ConfigurationError("Email on Acid requires both an API key and an account password.")
        self._auth = basic_auth_header(api_key, password)
        self._base_url = (base_url or self.BASE_URL).rstrip("/")
        self._submit_timeout = submit_timeout

    def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        headers = {"Authorization": self._auth, "Accept": "application/json"}
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = urllib.request.Request(
            f"{self._base_url}{path}",
            data=data,
            headers=headers,
            method=method,
        )
        with urllib.request.urlopen(req, timeout=timeout) as response:
            body = response.read()
        if not body:
            return {}
        return json.loads(body.decode("utf-8"))

    def submit_job(self, content: str, subject: str, clients: Sequence[str]) -> str:
        payload: Dict[str, Any] = {"subject": subject, "html": content}
        if clients:
            payload["clients"] = list(clients)
        LOGGER.info("Uploading email to Email on Acid (%s client(s) requested)", len(clients))
        try:
            data = self._request("POST", "/v5/email/tests", payload=payload, timeout=self._submit_timeout)
        except urllib.error.HTTPError as exc:
            if exc.code == 401:
                raise AuthenticationError("Authentication failed - check your API credentials") from exc
            raise SubmissionError(f"Email on Acid rejected the upload (HTTP {exc.code})") from exc
        except (OSError, http.client.HTTPException) as exc:
            raise SubmissionError(f"Upload to Email on Acid failed: {exc}") from exc
        except ValueError as exc:
            raise SubmissionError("Email on Acid returned an unreadable response") from exc

        job_id = data.get("id") if isinstance(data, dict) else None
        if not job_id:
            raise SubmissionError("Email on Acid did not return a test ID.")
        LOGGER.info("Test created. ID: %s", job_id)
        return str(job_id)

    def fetch_status(self, job_id: str, timeout: Optional[float] = None) -> Optional[StatusSnapshot]:
        LOGGER.debug("Polling test %s", job_id)
        try:
            data = self._request("GET", f"/v5/email/tests/{job_id}/results", timeout=timeout)
        except urllib.error.HTTPError as exc:
            if exc.code == 401:
                raise AuthenticationError("Authentication failed - check your API credentials") from exc
            if exc.code != 404:
                LOGGER.debug("API error %s, will retry", exc.code)
            return None
        # Dropped connections come out of http.client without a URLError wrapper.
        except (OSError, http.client.HTTPException, ValueError) as exc:
            LOGGER.debug("Polling test %s failed: %s", job_id, exc)
            return None
        if not isinstance(data, dict):
            return None
        return self.parse_results(data)

    @classmethod
    def parse_results(cls, data: Dict[str, Any]) -> StatusSnapshot:
        snapshot: StatusSnapshot = {}
        for client_id, entry in data.items():
            if not isinstance(entry, dict):
                continue
            raw_status = str(entry.get("status") or "")
            if raw_status in cls.SUCCESS_STATUSES:
                status = ReportedStatus.complete
            else:
                status = cls.FAILURE_STATUSES.get(raw_status, ReportedStatus.processing)
            screenshots = entry.get("screenshots")
            url = screenshots.get("default") if isinstance(screenshots, dict) else None
            snapshot[str(client_id)] = ClientReport(
                status=status,
                raw_status=raw_status,
                artifact_url=url if isinstance(url, str) and url else None,
            )
        return snapshot

    def list_clients(self) -> List[str]:
        try:
            data = self._request("GET", "/v5/email/clients", timeout=self._submit_timeout)
        except (OSError, http.client.HTTPException, ValueError) as exc:
            LOGGER.error("Unable to fetch supported clients: %s", exc)
            return []
        if not isinstance(data, dict):
            return []
        return sorted(str(key) for key in data.keys())


PROVIDERS: Dict[str, Type[PreviewProvider]] = {
    EmailOnAcidProvider.name: EmailOnAcidProvider,
}


def get_provider(name: Optional[str], api_key: Optional[str], password: Optional[str] = None) -> PreviewProvider:
    """Map a configuration value onto a provider instance."""
    key = (name or "").strip().lower()
    provider_cls = PROVIDERS.get(key)
    if provider_cls is None:
        raise ConfigurationError(f"Unsupported preview service: {name}")
    if not api_key:
        raise ConfigurationError(f"Missing API key for preview service: {key}")
    if provider_cls.requires_password and not password:
        raise ConfigurationError(f"Preview service {key} requires both API key and password.")
    return provider_cls(api_key, password)
