import json
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
import requests

from wa_bridge.audit import AuditLogger, AuditRecord
from wa_bridge.client import WhatsAppBridge
from wa_bridge.crm_client import CRMClient
from wa_bridge.dedupe import DedupCache
from wa_bridge.events import ConnectionUpdate
from wa_bridge.inbound import InboundForwarder
from wa_bridge.media_cache import MediaCache
from wa_bridge.outbound import OutboundForwarder
from wa_bridge.queue.send_queue import SendQueue
from wa_bridge.session import ChatSession
from wa_bridge.webhook_resolver import INBOUND_SETTINGS_FIELD, OUTBOUND_SETTINGS_FIELD, WebhookResolver

INBOUND_HOOK = "https://crm.example/hooks/inbound"
OUTBOUND_HOOK = "https://crm.example/hooks/outbound"


def make_response(status_code: int = 200, body: Optional[Dict[str, Any]] = None, reason: str = "") -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response.reason = reason or ("OK" if status_code < 400 else "Error")
    response._content = json.dumps(body if body is not None else {}).encode()
    return response


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSink:
    def __init__(self):
        self.records: List[AuditRecord] = []

    def write(self, record: AuditRecord) -> None:
        self.records.append(record)

    def of_type(self, event_type: str) -> List[AuditRecord]:
        return [r for r in self.records if r.event_type == event_type]


class FakeSession(ChatSession):
    def __init__(self, user_jid: str = "85298765432:7@s.whatsapp.net"):
        self.user_jid = user_jid
        self.sent = []
        self.fail_sends = 0
        self.logged_out = False
        self.closed = False
        self.on_messages = None
        self.on_connection_update = None

    def start(self, on_messages, on_connection_update):
        self.on_messages = on_messages
        self.on_connection_update = on_connection_update

    def open(self):
        self.on_connection_update(ConnectionUpdate(connection="open", user_jid=self.user_jid))

    def send(self, jid, content):
        if self.fail_sends:
            self.fail_sends -= 1
            raise ConnectionError("transport closed")
        self.sent.append((jid, content))
        return f"msg-{len(self.sent)}"

    def logout(self):
        self.logged_out = True

    def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def audit(sink):
    return AuditLogger(sink, background=False)


@pytest.fixture
def crm():
    crm = Mock(spec=CRMClient)
    crm.post_webhook.return_value = make_response(200)
    crm.save_outbound_message.return_value = make_response(201)
    crm.get_settings.return_value = make_response(200, {"settings": {}})
    crm.get_template.return_value = None
    return crm


@pytest.fixture
def sessions():
    return []


@pytest.fixture
def bridge(crm, audit, sessions):
    def session_factory():
        session = FakeSession()
        sessions.append(session)
        return session

    bridge = WhatsAppBridge(
        session_factory=session_factory,
        crm=crm,
        send_queue=SendQueue(max_retries=2, retry_delay=0.01, sleep=lambda seconds: None),
        inbound=InboundForwarder(
            crm, WebhookResolver("inbound", crm, INBOUND_SETTINGS_FIELD, override=INBOUND_HOOK), DedupCache(), audit
        ),
        outbound=OutboundForwarder(
            crm, WebhookResolver("outbound", crm, OUTBOUND_SETTINGS_FIELD, override=OUTBOUND_HOOK), DedupCache(), audit
        ),
        media_cache=MediaCache(fetch=Mock(return_value=b"\x89PNG-bytes")),
        audit=audit,
    )
    bridge.start()
    yield bridge
    bridge.stop()
