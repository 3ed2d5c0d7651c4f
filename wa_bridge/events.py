"""Chat protocol events and the plumbing shared by both forwarders."""
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from wa_bridge.audit import AuditLogger
from wa_bridge.crm_client import CRMClient
from wa_bridge.dedupe import DedupCache
from wa_bridge.logging_conf import logger
from wa_bridge.webhook_resolver import WebhookResolver

USER_JID_SUFFIX = "@s.whatsapp.net"
GROUP_JID_MARKER = "@g.us"
BROADCAST_JID_MARKER = "@broadcast"

NOT_CONFIGURED_ERROR = "Webhook URL not configured"


@dataclass(frozen=True)
class ProtocolMessage:
    """A message event delivered by the chat session."""

    id: str
    remote_jid: str  # Sender for inbound, recipient for outbound
    text: str = ""
    timestamp: Optional[int] = None  # Seconds since epoch
    from_me: bool = False


@dataclass(frozen=True)
class ConnectionUpdate:
    """A connection state notification from the chat session."""

    connection: Optional[str] = None  # "connecting", "open" or "close"
    qr: Optional[str] = None
    logged_out: bool = False
    status_code: Optional[int] = None
    error: Optional[str] = None
    user_jid: Optional[str] = None


def is_group_or_broadcast(jid: str) -> bool:
    return GROUP_JID_MARKER in jid or BROADCAST_JID_MARKER in jid


def jid_to_e164(jid: str) -> str:
    """'85291234567@s.whatsapp.net' -> '+85291234567'."""
    phone_number = jid.split("@")[0].split(":")[0]
    return phone_number if phone_number.startswith("+") else f"+{phone_number}"


def phone_to_jid(phone: str) -> str:
    """'+852 9123-4567' -> '85291234567@s.whatsapp.net'."""
    return f"{re.sub(r'[^0-9]', '', phone)}{USER_JID_SUFFIX}"


def iso_timestamp(timestamp: Optional[int]) -> str:
    if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
        try:
            return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            logger.warning(f"Timestamp out of range, using current time: {timestamp}")
    return datetime.now(timezone.utc).isoformat()


class Forwarder:
    """
    Mirrors chat messages of one direction into the CRM.

    `handle` never raises: group and broadcast messages are ignored, duplicates are
    dropped, and every forwarding outcome ends up as exactly one audit record.
    Subclasses build the payloads and may add work before forwarding.
    """

    direction = ""
    counterpart_key = ""  # Audit metadata key for the other party

    def __init__(self, crm: CRMClient, resolver: WebhookResolver, dedupe: DedupCache, audit: AuditLogger):
        self.crm = crm
        self.resolver = resolver
        self.dedupe = dedupe
        self.audit = audit

    def handle(self, message: ProtocolMessage) -> None:
        if is_group_or_broadcast(message.remote_jid):
            return

        try:
            self._handle(message)
        except Exception as e:
            logger.error(f"Error handling {self.direction} message {message.id}: {e}", exc_info=True)
            self.audit.log(self.direction, {
                "messageId": message.id,
                self.counterpart_key: jid_to_e164(message.remote_jid),
                "success": False,
                "error": str(e),
            })

    def _handle(self, message: ProtocolMessage) -> None:
        if self.dedupe.has(message.id):
            logger.debug(f"Duplicate {self.direction} message ignored: {message.id}")
            return
        self.dedupe.add(message.id)

        phone_e164 = jid_to_e164(message.remote_jid)
        timestamp = iso_timestamp(message.timestamp)
        logger.info(
            f"Processing {self.direction} message {message.id}",
            extra={"message_id": message.id, self.counterpart_key: phone_e164},
        )

        webhook_url = self.resolver.get_address()
        self.before_forward(message, phone_e164, timestamp)
        self.forward(webhook_url, message, self.build_payload(message, phone_e164, timestamp), phone_e164)

    def before_forward(self, message: ProtocolMessage, phone_e164: str, timestamp: str) -> None:
        pass

    def build_payload(self, message: ProtocolMessage, phone_e164: str, timestamp: str) -> Dict[str, Any]:
        raise NotImplementedError()

    def forward(self, webhook_url: Optional[str], message: ProtocolMessage, payload: Dict[str, Any], phone_e164: str) -> None:
        metadata: Dict[str, Any] = {"messageId": message.id, self.counterpart_key: phone_e164}

        if not webhook_url:
            logger.warning(f"{self.direction.capitalize()} webhook URL not configured, message not forwarded")
            self.audit.log(self.direction, {**metadata, "success": False, "error": NOT_CONFIGURED_ERROR})
            return

        try:
            response = self.crm.post_webhook(webhook_url, payload)
        except requests.exceptions.RequestException as e:
            logger.error(f"Error forwarding {self.direction} message {message.id} to webhook: {e}")
            self.audit.log(self.direction, {**metadata, "success": False, "error": str(e)})
            return

        if response.ok:
            logger.info(f"{self.direction.capitalize()} message forwarded to webhook: {message.id}")
        else:
            logger.error(
                f"Failed to forward {self.direction} message {message.id}: HTTP {response.status_code} {response.reason}"
            )
        self.audit.log(self.direction, {**metadata, "success": response.ok, "status": response.status_code})
