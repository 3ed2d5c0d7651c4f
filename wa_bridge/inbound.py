"""Forwards messages received on the paired device to the CRM inbound webhook."""
from typing import Any, Dict

from wa_bridge.events import Forwarder, ProtocolMessage


class InboundForwarder(Forwarder):
    direction = "inbound"
    counterpart_key = "from"

    def build_payload(self, message: ProtocolMessage, phone_e164: str, timestamp: str) -> Dict[str, Any]:
        return {
            "provider": "baileys",
            "from": phone_e164,
            "body": message.text,
            "message": message.text,
            "message_id": message.id,
            "timestamp": timestamp,
            "type": "text",
            "phone_e164": phone_e164,
        }
