"""Minimal CRM API client used by the forwarders, resolvers and the send path."""
from typing import Optional, Dict, Any, List
import requests

from wa_bridge.logging_conf import logger

SETTINGS_TIMEOUT = 5
REQUEST_TIMEOUT = 10
MEDIA_TIMEOUT = 30


class CRMClient:
    """Talks to the CRM's HTTP API and to the webhook addresses it hands out."""

    def __init__(self, base_url: str = "http://localhost:3000", api_key: str = ""):
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        if api_key:
            self.session.headers["X-API-Key"] = api_key

        # Webhooks and media live outside the CRM; never send them the API key
        self.webhook_session = requests.Session()
        self.webhook_session.headers.update({"Content-Type": "application/json"})

    def close(self):
        self.session.close()
        self.webhook_session.close()

    def get_settings(self) -> requests.Response:
        """GET /api/settings. Transport errors propagate to the caller."""
        return self.session.get(f"{self.base_url}/api/settings", timeout=SETTINGS_TIMEOUT)

    def save_outbound_message(self, payload: Dict[str, Any]) -> requests.Response:
        """Persist a message sent from the paired device into the CRM's message store."""
        return self.session.post(
            f"{self.base_url}/api/whatsapp/outbound",
            json=payload,
            timeout=REQUEST_TIMEOUT,
        )

    def post_webhook(self, url: str, payload: Dict[str, Any]) -> requests.Response:
        """POST a forwarding payload to a resolved webhook address."""
        return self.webhook_session.post(url, json=payload, timeout=REQUEST_TIMEOUT)

    def get_template(self, name: str, language: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a custom template and return the record matching name and language exactly.

        Args:
            name: Template name
            language: Template language code

        Returns:
            Template record or None if not found or the CRM call failed
        """
        try:
            response = self.session.get(
                f"{self.base_url}/api/whatsapp/templates",
                params={"name": name, "language": language, "is_custom": "true"},
                timeout=REQUEST_TIMEOUT,
            )
            if not response.ok:
                logger.warning(
                    f"Failed to fetch template {name} ({language}) from CRM: HTTP {response.status_code}"
                )
                return None

            templates: List[Dict[str, Any]] = response.json().get("templates") or []
            for template in templates:
                if template.get("name") == name and template.get("language") == language:
                    return template

            logger.warning(f"Template {name} ({language}) not found in CRM")
            return None

        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Error fetching template {name} ({language}) from CRM: {e}")
            return None

    def download(self, url: str) -> bytes:
        """Download media from a URL. Raises on transport errors and non-2xx responses."""
        response = self.webhook_session.get(url, timeout=MEDIA_TIMEOUT)
        response.raise_for_status()
        return response.content
