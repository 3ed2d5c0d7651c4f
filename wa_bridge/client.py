"""Client facade: owns the chat session and everything hanging off it."""
import threading
from functools import partial
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from wa_bridge.audit import AuditLogger
from wa_bridge.crm_client import CRMClient
from wa_bridge.errors import (
    MediaDownloadError,
    MessageValidationError,
    NotConnectedError,
    SendFailedError,
    TemplateNotFoundError,
)
from wa_bridge.events import ConnectionUpdate, ProtocolMessage, phone_to_jid
from wa_bridge.inbound import InboundForwarder
from wa_bridge.logging_conf import logger
from wa_bridge.media_cache import MediaCache
from wa_bridge.outbound import OutboundForwarder
from wa_bridge.queue.send_queue import SendQueue
from wa_bridge.session import ChatSession, SessionFactory

TEMPLATE_IMAGE_FIELDS = [f"image{i}" for i in range(1, 9)]


@dataclass
class TemplateRef:
    name: str
    language: str
    variables: List[str] = field(default_factory=list)


@dataclass
class SendMessageOptions:
    to: str
    text: Optional[str] = None
    image_url: Optional[str] = None
    caption: Optional[str] = None
    template: Optional[TemplateRef] = None

    def validate(self):
        if not self.to or not self.to.strip():
            raise MessageValidationError("Missing required field: to")
        if not (self.text or self.image_url or self.template):
            raise MessageValidationError("Either text, image, or template is required")


def template_image_urls(template: Dict[str, Any]) -> List[str]:
    """Image URLs of a template: from IMAGE body components, else the image1..image8 columns."""
    urls: List[str] = []
    for component in template.get("components") or []:
        if component.get("type") != "BODY" or component.get("format") != "IMAGE":
            continue
        if component.get("images"):
            urls.extend(component["images"])
        else:
            urls.extend(template[name] for name in TEMPLATE_IMAGE_FIELDS if template.get(name))
    return urls


class WhatsAppBridge:
    """
    Wires the chat session to the forwarders and exposes send, status and disconnect.

    Session events are routed to the inbound or outbound forwarder; API sends go
    through the send queue so they are delivered one at a time, in order.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        crm: CRMClient,
        send_queue: SendQueue,
        inbound: InboundForwarder,
        outbound: OutboundForwarder,
        media_cache: MediaCache,
        audit: AuditLogger,
    ):
        self.session_factory = session_factory
        self.crm = crm
        self.send_queue = send_queue
        self.inbound = inbound
        self.outbound = outbound
        self.media_cache = media_cache
        self.audit = audit

        self.session: Optional[ChatSession] = None
        self.connected = False
        self.phone_number: Optional[str] = None
        self.running = False
        self._session_lock = threading.RLock()

    def start(self):
        """Start background sweeps and initialize the chat session."""
        if self.running:
            logger.warning("Bridge is already running")
            return

        self.running = True
        self.inbound.dedupe.start()
        self.outbound.dedupe.start()
        self.media_cache.start()
        self.initialize_session()
        logger.info("Bridge started")

    def stop(self):
        """Stop the bridge and release its resources."""
        if not self.running:
            return

        self.running = False
        self.inbound.dedupe.stop()
        self.outbound.dedupe.stop()
        self.media_cache.stop()

        with self._session_lock:
            session, self.session = self.session, None
            self._reset_connection_state()
        self._close_session(session)

        self.send_queue.join(timeout=10)
        self.crm.close()
        self.audit.close()
        logger.info("Bridge stopped")

    def initialize_session(self) -> bool:
        """Create and start a chat session. Failures are logged and leave no session."""
        with self._session_lock:
            try:
                session = self.session_factory()
                self.session = session
                session.start(self.on_messages, partial(self.on_connection_update, session=session))
                return True
            except Exception as e:
                logger.error(f"Failed to initialize chat session: {e}", exc_info=True)
                self.session = None
                return False

    def on_messages(self, messages: List[ProtocolMessage], upsert_type: str) -> None:
        if upsert_type != "notify":
            return

        for message in messages:
            direction = "outbound" if message.from_me else "inbound"
            try:
                if message.from_me:
                    # Sent from the paired device itself
                    self.outbound.handle(message)
                else:
                    self.inbound.handle(message)
            except Exception as e:
                logger.error(f"Failed to handle {direction} message {message.id}: {e}", exc_info=True)

    def on_connection_update(self, update: ConnectionUpdate, session: Optional[ChatSession] = None) -> None:
        if session is not None and session is not self.session:
            logger.debug(f"Ignoring {update.connection} update from a replaced chat session")
            return

        if update.qr:
            logger.info("QR code generated")

        if update.connection == "close":
            should_reconnect = not update.logged_out
            logger.warning(
                f"Connection closed (status {update.status_code}): {update.error}",
                extra={"should_reconnect": should_reconnect, "status_code": update.status_code},
            )
            with self._session_lock:
                self._reset_connection_state()
                # No session means disconnect() or stop() is already replacing it
                if not (should_reconnect and self.running and self.session is not None):
                    return
                previous, self.session = self.session, None

            self._close_session(previous)
            logger.info("Reconnecting...")
            self.initialize_session()

        elif update.connection == "open":
            logger.info("WhatsApp connected")
            self.connected = True
            if update.user_jid:
                self.phone_number = update.user_jid.split(":")[0].split("@")[0]

        elif update.connection == "connecting":
            logger.info("Connecting to WhatsApp...")
            self.connected = False

    def _reset_connection_state(self):
        self.connected = False
        self.phone_number = None

    def _close_session(self, session: Optional[ChatSession]) -> None:
        if session is None:
            return
        try:
            session.close()
        except Exception as e:
            logger.error(f"Error closing chat session: {e}")

    def get_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {"connected": self.connected}
        if self.phone_number:
            status["phoneNumber"] = self.phone_number
        return status

    def send_message(self, options: SendMessageOptions, timeout: Optional[float] = None) -> str:
        """Queue a send and wait for it. Raises the last error once retries are exhausted."""
        options.validate()

        if self.session is None:
            raise NotConnectedError("WhatsApp client not initialized")
        if not self.connected:
            raise NotConnectedError("WhatsApp not connected. Please connect first.")

        future = self.send_queue.enqueue(options, self._execute_send)
        return future.result(timeout)

    def _execute_send(self, options: SendMessageOptions) -> str:
        session = self.session
        if session is None:
            raise NotConnectedError("WhatsApp client not initialized")

        jid = phone_to_jid(options.to)

        try:
            if options.template:
                content = self._template_content(options.template)
            elif options.image_url:
                image = self.media_cache.get(options.image_url)
                if image is None:
                    raise MediaDownloadError("Failed to download image")
                content = {"image": image, "caption": options.caption or options.text or None}
            elif options.text:
                content = {"text": options.text}
            else:
                raise MessageValidationError("Either text, image, or template is required")

            message_id = session.send(jid, content)
            if not message_id:
                raise SendFailedError(f"Failed to send message to {jid}")
            return message_id

        except Exception as e:
            logger.error(f"Failed to execute send to {jid}: {e}", extra={"to": options.to, "jid": jid})
            raise

    def _template_content(self, ref: TemplateRef) -> Dict[str, Any]:
        template = self.crm.get_template(ref.name, ref.language)
        if not template:
            raise TemplateNotFoundError(ref.name, ref.language)

        images = []
        for url in template_image_urls(template):
            image = self.media_cache.get(url)
            if image is not None:
                images.append(image)

        return {"template": template, "variables": list(ref.variables), "images": images}

    def refresh_webhooks(self) -> None:
        """Force both forwarders to re-resolve their webhook addresses now."""
        self.inbound.resolver.refresh()
        self.outbound.resolver.refresh()

    def disconnect(self) -> None:
        """Log out of the chat session and start a fresh one for the next pairing."""
        with self._session_lock:
            session, self.session = self.session, None
            self._reset_connection_state()

        # Outside the lock: logout may emit a close update on the session's own thread
        if session is not None:
            try:
                session.logout()
                session.close()
            except Exception as e:
                logger.error(f"Error during disconnect: {e}")

        self.initialize_session()
