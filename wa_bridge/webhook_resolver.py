"""Resolves the CRM webhook address for one forwarding direction."""
import threading
import time
from typing import Callable, Optional

import requests

from wa_bridge.crm_client import CRMClient
from wa_bridge.logging_conf import logger

REFRESH_INTERVAL_SECONDS = 5 * 60

INBOUND_SETTINGS_FIELD = "n8n_webhook_inbound_url"
OUTBOUND_SETTINGS_FIELD = "n8n_webhook_url"


class WebhookResolver:
    """
    Holds the current webhook address for a direction ("inbound" or "outbound").

    An override address, when configured, is used permanently and the CRM is never
    asked. Otherwise the address is read from the CRM settings endpoint, lazily and
    at most once per refresh interval while it is set. Any failed resolution clears
    the cached address so nothing is forwarded to a stale endpoint.
    """

    def __init__(
        self,
        direction: str,
        crm: CRMClient,
        settings_field: str,
        override: Optional[str] = None,
        refresh_interval: float = REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.direction = direction
        self.crm = crm
        self.settings_field = settings_field
        self.override = override or None
        self.refresh_interval = refresh_interval
        self._clock = clock
        self._lock = threading.Lock()

        self.address: Optional[str] = self.override
        self.last_fetched_at: Optional[float] = None

        if self.override:
            logger.info(f"{direction.capitalize()} webhook URL set from environment: {self.override}")

    def get_address(self) -> Optional[str]:
        """Return the current address, re-resolving when unset or stale."""
        if self.override:
            return self.override

        with self._lock:
            if self._needs_refresh():
                self._resolve()
            return self.address

    def refresh(self) -> None:
        """Force an immediate re-resolution."""
        if self.override:
            logger.debug(f"{self.direction.capitalize()} webhook URL is overridden, skipping refresh")
            return

        logger.info(f"Refreshing {self.direction} webhook URL from CRM")
        with self._lock:
            self._resolve()

    def _needs_refresh(self) -> bool:
        if not self.address or self.last_fetched_at is None:
            return True
        return self._clock() - self.last_fetched_at > self.refresh_interval

    def _resolve(self) -> None:
        self.last_fetched_at = self._clock()

        try:
            response = self.crm.get_settings()
        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching {self.direction} webhook URL from CRM: {e}")
            self._clear()
            return

        if not response.ok:
            logger.warning(f"Failed to fetch {self.direction} webhook URL from CRM: HTTP {response.status_code}")
            self._clear()
            return

        try:
            settings = response.json().get("settings") or {}
            webhook_url = settings.get(self.settings_field)
        except (ValueError, AttributeError) as e:
            logger.warning(f"Unreadable CRM settings response for {self.direction} webhook: {e}")
            self._clear()
            return

        if not webhook_url:
            logger.warning(f"{self.direction.capitalize()} webhook URL not found in CRM settings")
            self._clear()
            return

        previous_url = self.address
        self.address = webhook_url
        if previous_url != webhook_url:
            logger.info(
                f"{self.direction.capitalize()} webhook URL updated from CRM: {webhook_url}",
                extra={"previous_url": previous_url},
            )
        else:
            logger.debug(f"Fetched {self.direction} webhook URL from CRM (unchanged)")

    def _clear(self) -> None:
        if self.address:
            logger.info(f"Clearing cached {self.direction} webhook URL")
        self.address = None
