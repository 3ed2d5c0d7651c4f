from unittest.mock import Mock

import pytest

from wa_bridge.client import SendMessageOptions, TemplateRef, WhatsAppBridge, template_image_urls
from wa_bridge.errors import MediaDownloadError, MessageValidationError, NotConnectedError, TemplateNotFoundError
from wa_bridge.events import ConnectionUpdate, ProtocolMessage


class TestConnectionState:
    def test_open_sets_connected_and_phone_number(self, bridge, sessions):
        sessions[0].open()

        assert bridge.get_status() == {"connected": True, "phoneNumber": "85298765432"}

    def test_connecting_clears_connected(self, bridge, sessions):
        sessions[0].open()
        sessions[0].on_connection_update(ConnectionUpdate(connection="connecting"))

        assert bridge.get_status()["connected"] is False

    def test_close_reinitializes_session(self, bridge, sessions):
        sessions[0].open()
        sessions[0].on_connection_update(ConnectionUpdate(connection="close", status_code=428, error="lost"))

        assert bridge.get_status() == {"connected": False}
        assert len(sessions) == 2
        assert bridge.session is sessions[1]
        assert sessions[0].closed is True

    def test_updates_from_replaced_session_are_ignored(self, bridge, sessions):
        sessions[0].open()
        sessions[0].on_connection_update(ConnectionUpdate(connection="close", status_code=428))

        sessions[0].on_connection_update(ConnectionUpdate(connection="open", user_jid="1:1@s.whatsapp.net"))
        sessions[0].on_connection_update(ConnectionUpdate(connection="close", status_code=428))

        assert bridge.get_status() == {"connected": False}
        assert len(sessions) == 2
        assert bridge.session is sessions[1]

    def test_close_after_logout_does_not_reconnect(self, bridge, sessions):
        sessions[0].open()
        sessions[0].on_connection_update(ConnectionUpdate(connection="close", logged_out=True, status_code=401))

        assert len(sessions) == 1
        assert bridge.connected is False

    def test_initialization_failure_leaves_session_unset(self, crm, audit):
        bridge = WhatsAppBridge(
            session_factory=Mock(side_effect=RuntimeError("no auth state")),
            crm=crm,
            send_queue=Mock(),
            inbound=Mock(),
            outbound=Mock(),
            media_cache=Mock(),
            audit=audit,
        )

        assert bridge.initialize_session() is False
        assert bridge.session is None
        with pytest.raises(NotConnectedError):
            bridge.send_message(SendMessageOptions(to="+85291234567", text="hi"))


class TestMessageRouting:
    def test_routes_by_direction(self, bridge, sessions):
        bridge.inbound.handle = Mock()
        bridge.outbound.handle = Mock()
        incoming = ProtocolMessage(id="i1", remote_jid="85291234567@s.whatsapp.net", text="hi")
        mine = ProtocolMessage(id="o1", remote_jid="85291234567@s.whatsapp.net", text="yo", from_me=True)

        sessions[0].on_messages([incoming, mine], "notify")

        bridge.inbound.handle.assert_called_once_with(incoming)
        bridge.outbound.handle.assert_called_once_with(mine)

    def test_ignores_non_notify_batches(self, bridge, sessions):
        bridge.inbound.handle = Mock()

        sessions[0].on_messages([ProtocolMessage(id="h1", remote_jid="1@s.whatsapp.net")], "append")

        bridge.inbound.handle.assert_not_called()

    def test_one_failing_message_does_not_stop_the_batch(self, bridge, sessions):
        bridge.inbound.handle = Mock(side_effect=[RuntimeError("bad"), None])
        messages = [
            ProtocolMessage(id="a", remote_jid="1@s.whatsapp.net"),
            ProtocolMessage(id="b", remote_jid="2@s.whatsapp.net"),
        ]

        sessions[0].on_messages(messages, "notify")

        assert bridge.inbound.handle.call_count == 2

    def test_inbound_end_to_end(self, bridge, sessions, crm, sink):
        message = ProtocolMessage(id="m1", remote_jid="85291234567@s.whatsapp.net", text="hi")

        sessions[0].on_messages([message], "notify")
        sessions[0].on_messages([message], "notify")

        crm.post_webhook.assert_called_once()
        assert crm.post_webhook.call_args.args[1]["phone_e164"] == "+85291234567"
        assert len(sink.of_type("inbound")) == 1
        assert sink.of_type("inbound")[0].success is True


class TestSendMessage:
    def test_text_send_normalizes_destination(self, bridge, sessions):
        sessions[0].open()

        message_id = bridge.send_message(SendMessageOptions(to="+852 9123 4567", text="hello"))

        assert message_id == "msg-1"
        assert sessions[0].sent == [("85291234567@s.whatsapp.net", {"text": "hello"})]

    def test_not_connected_is_rejected_before_queueing(self, bridge):
        with pytest.raises(NotConnectedError, match="not connected"):
            bridge.send_message(SendMessageOptions(to="+85291234567", text="hello"))
        assert bridge.send_queue.pending() == 0

    def test_validation(self, bridge):
        with pytest.raises(MessageValidationError):
            bridge.send_message(SendMessageOptions(to="", text="hello"))
        with pytest.raises(MessageValidationError):
            bridge.send_message(SendMessageOptions(to="+85291234567"))

    def test_transient_failures_are_retried(self, bridge, sessions):
        sessions[0].open()
        sessions[0].fail_sends = 2

        assert bridge.send_message(SendMessageOptions(to="+85291234567", text="hello")) == "msg-1"

    def test_exhausted_retries_surface_the_error(self, bridge, sessions):
        sessions[0].open()
        sessions[0].fail_sends = 10

        with pytest.raises(ConnectionError, match="transport closed"):
            bridge.send_message(SendMessageOptions(to="+85291234567", text="hello"))

    def test_image_send_uses_media_cache(self, bridge, sessions):
        sessions[0].open()

        bridge.send_message(SendMessageOptions(to="+85291234567", image_url="https://cdn.example/a.png", text="look"))

        jid, content = sessions[0].sent[0]
        assert content == {"image": b"\x89PNG-bytes", "caption": "look"}

    def test_image_download_failure_fails_the_send(self, bridge, sessions):
        sessions[0].open()
        bridge.media_cache.get = Mock(return_value=None)

        with pytest.raises(MediaDownloadError):
            bridge.send_message(SendMessageOptions(to="+85291234567", image_url="https://cdn.example/a.png"))

    def test_template_send_passes_record_and_images(self, bridge, sessions, crm):
        sessions[0].open()
        template = {
            "name": "welcome",
            "language": "en",
            "components": [{"type": "BODY", "format": "IMAGE", "text": "Hi {{1}}"}],
            "image1": "https://cdn.example/1.png",
        }
        crm.get_template.return_value = template

        bridge.send_message(SendMessageOptions(to="+85291234567", template=TemplateRef("welcome", "en", ["Ann"])))

        crm.get_template.assert_called_with("welcome", "en")
        _, content = sessions[0].sent[0]
        assert content == {"template": template, "variables": ["Ann"], "images": [b"\x89PNG-bytes"]}

    def test_unknown_template_fails(self, bridge, sessions, crm):
        sessions[0].open()
        crm.get_template.return_value = None

        with pytest.raises(TemplateNotFoundError):
            bridge.send_message(SendMessageOptions(to="+85291234567", template=TemplateRef("nope", "en")))


class TestTemplateImages:
    def test_component_images_take_precedence(self):
        template = {
            "components": [{"type": "BODY", "format": "IMAGE", "images": ["https://a", "https://b"]}],
            "image1": "https://ignored",
        }
        assert template_image_urls(template) == ["https://a", "https://b"]

    def test_text_only_template_has_no_images(self):
        assert template_image_urls({"components": [{"type": "BODY", "text": "hi"}], "image1": "https://x"}) == []


class TestLifecycle:
    def test_refresh_webhooks_refreshes_both_resolvers(self, bridge):
        bridge.inbound.resolver.refresh = Mock()
        bridge.outbound.resolver.refresh = Mock()

        bridge.refresh_webhooks()

        bridge.inbound.resolver.refresh.assert_called_once()
        bridge.outbound.resolver.refresh.assert_called_once()

    def test_disconnect_logs_out_and_starts_fresh_session(self, bridge, sessions):
        sessions[0].open()

        bridge.disconnect()

        assert sessions[0].logged_out is True
        assert sessions[0].closed is True
        assert bridge.get_status() == {"connected": False}
        assert bridge.session is sessions[1]

    def test_stop_closes_session(self, bridge, sessions, crm):
        bridge.stop()

        assert sessions[0].closed is True
        assert bridge.session is None
        crm.close.assert_called_once()
