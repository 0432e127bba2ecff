"""
MikroTik RouterOS REST client for the SMS inbox.

Fetches carrier messages received by the router's LTE modem and asks the
carrier for a fresh status message. Every failure surfaces as a single
TransportFailure; retrying is left to the caller.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..config.loader import RouterConfig
from ..core.ingestion import RawMessage

logger = logging.getLogger(__name__)

INBOX_PATH = "/rest/tool/sms/inbox"
SEND_PATH = "/rest/tool/sms/send"

# RouterOS local time formats, e.g. "aug/17/2024 15:27:02" (v6) and "2024-08-17 15:27:02" (v7)
ROUTEROS_TIME_FORMATS = ("%b/%d/%Y %H:%M:%S", "%Y-%m-%d %H:%M:%S")


class TransportFailure(Exception):
    """Raised when the router cannot be reached or answers unexpectedly."""


def resolve_received_at(entry: Dict[str, Any]) -> Optional[datetime]:
    """Resolve the receipt time of an inbox entry.

    Tries the RFC 3339 `timestamp` and `received` fields, then the RouterOS
    `time` string, which is read as UTC.

    Returns:
        Timezone-aware datetime, or None when no field can be parsed
    """
    for key in ("timestamp", "received"):
        value = entry.get(key)
        if not value:
            continue
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    value = entry.get("time")
    if value:
        for fmt in ROUTEROS_TIME_FORMATS:
            try:
                return datetime.strptime(str(value), fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
    return None


class MikroTikClient:
    """Synchronous REST client for the router's SMS tool."""

    def __init__(self, config: RouterConfig, transport: Optional[httpx.BaseTransport] = None):
        """Initialize the client.

        Args:
            config: Router URL, credentials and status request settings
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        headers = {
            "Content-Type": "application/json",
            "Cache-Control": "no-store",
        }
        auth = None
        if config.auth_base64:
            headers["Authorization"] = f"Basic {config.auth_base64}"
        else:
            auth = httpx.BasicAuth(config.username, config.password)

        self._client = httpx.Client(
            base_url=config.base_url,
            headers=headers,
            auth=auth,
            timeout=httpx.Timeout(10.0, connect=2.0),
            transport=transport,
        )

    def __enter__(self) -> "MikroTikClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        logger.debug("%s %s%s", method, self.config.base_url, path)
        try:
            response = self._client.request(method, path, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Router request failed: status=%s body=%s",
                e.response.status_code,
                e.response.text[:300]
            )
            raise TransportFailure(
                f"{method} {path} failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"{method} {path} failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise TransportFailure(
                f"Decoding JSON from {method} {path} failed: {e}; body: {response.text[:300]}"
            ) from e

    def fetch_all_messages(self) -> List[RawMessage]:
        """Fetch every message in the router's SMS inbox.

        Returns:
            (text, received_at) pairs; received_at is None when the entry
            carries no parseable time

        Raises:
            TransportFailure: On connection, HTTP or decoding errors
        """
        entries = self._request("GET", INBOX_PATH)
        if not isinstance(entries, list):
            raise TransportFailure(f"Unexpected inbox payload: {type(entries).__name__}")

        messages = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise TransportFailure(f"Unexpected inbox entry: {entry!r}")
            received_at = resolve_received_at(entry)
            if received_at is None:
                logger.warning(
                    "Could not parse receipt time for SMS id=%s from=%s",
                    entry.get(".id"), entry.get("from")
                )
            messages.append(RawMessage(text=str(entry.get("message", "")), received_at=received_at))
        logger.info("Fetched %d message(s) from router inbox", len(messages))
        return messages

    def request_status_message(self) -> None:
        """Ask the carrier to send a fresh data status SMS.

        Raises:
            TransportFailure: On connection, HTTP or decoding errors
        """
        logger.info("Requesting data status from %s", self.config.status_number)
        self._request(
            "POST",
            SEND_PATH,
            json={
                "phone-number": self.config.status_number,
                "message": self.config.status_keyword,
            },
        )
