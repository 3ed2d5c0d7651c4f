"""Mirrors messages typed on the paired device itself into the CRM."""
from typing import Any, Dict

from wa_bridge.events import Forwarder, ProtocolMessage
from wa_bridge.logging_conf import logger


class OutboundForwarder(Forwarder):
    """
    Outbound messages never pass through the API, so the CRM has no record of them.
    Each one is first saved through the CRM API, then forwarded to the outbound
    webhook. A failed save is logged and does not stop the forward.
    """

    direction = "outbound"
    counterpart_key = "to"

    def before_forward(self, message: ProtocolMessage, phone_e164: str, timestamp: str) -> None:
        record = {
            "from": phone_e164,  # The recipient; the CRM keys conversations by contact
            "body": message.text,
            "message": message.text,
            "message_id": message.id,
            "timestamp": timestamp,
            "type": "text",
            "phone_e164": phone_e164,
            "direction": "out",
        }
        try:
            response = self.crm.save_outbound_message(record)
        except Exception as e:
            logger.error(f"Error saving outbound message {message.id} to CRM: {e}")
            return

        if response.ok:
            logger.info(f"Outbound message saved to CRM database: {message.id}")
        else:
            logger.warning(f"Failed to save outbound message {message.id} to CRM database: HTTP {response.status_code}")

    def build_payload(self, message: ProtocolMessage, phone_e164: str, timestamp: str) -> Dict[str, Any]:
        return {
            "action": "message_sent",
            "direction": "out",
            "from": phone_e164,
            "body": message.text,
            "message": message.text,
            "message_id": message.id,
            "timestamp": timestamp,
            "type": "text",
            "phone_e164": phone_e164,
            "provider": "wa-bridge-mobile",
        }
