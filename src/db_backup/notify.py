from __future__ import annotations

import json
import logging
from typing import Dict, Optional

import requests

from .config import WebhookSettings
from .report import RunReport

LOG = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "db-backup"


def parse_extra_headers(raw: Optional[str]) -> Dict[str, str]:
    """Turn ``k=v,k2=v2`` into a header mapping; pairs without ``=`` are dropped."""
    headers: Dict[str, str] = {}
    if not raw:
        return headers
    for pair in raw.split(","):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        key = key.strip()
        if key:
            headers[key] = value.strip()
    return headers


def parse_auth_header(raw: Optional[str]) -> Dict[str, str]:
    if not raw or not raw.strip():
        return {}
    if ":" in raw:
        name, value = raw.split(":", 1)
        if name.strip() and " " not in name.strip():
            return {name.strip(): value.strip()}
    return {"Authorization": raw.strip()}


class WebhookNotifier:
    """Posts the run report to a webhook. Never raises."""

    def __init__(self, settings: WebhookSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self._settings.url)

    def build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": DEFAULT_USER_AGENT}
        headers.update(parse_auth_header(self._settings.auth_header))
        headers.update(parse_extra_headers(self._settings.extra_headers))
        return headers

    def send(self, report: RunReport) -> bool:
        if not self.enabled:
            return False

        payload = json.dumps(report.to_payload())
        try:
            response = self._session.request(
                self._settings.method,
                self._settings.url,
                data=payload,
                headers=self.build_headers(),
                timeout=self._settings.timeout_seconds,
            )
        except requests.RequestException as exc:
            LOG.warning("Webhook send failed: %s", exc)
            return False
        except Exception as exc:  # noqa: BLE001
            LOG.warning("Webhook send failed unexpectedly: %s", exc)
            return False

        if response.status_code >= 400:
            LOG.warning("Webhook returned HTTP %s: %s", response.status_code, response.text[:200])
            return False
        LOG.info("Webhook notified (%s, HTTP %s)", report.status, response.status_code)
        return True
