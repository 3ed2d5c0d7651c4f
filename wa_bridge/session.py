"""Interface to the chat protocol session the bridge runs on top of."""
import importlib
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from wa_bridge.events import ConnectionUpdate, ProtocolMessage

MessagesHandler = Callable[[List[ProtocolMessage], str], None]
ConnectionHandler = Callable[[ConnectionUpdate], None]


class ChatSession(ABC):
    """
    A live connection to the messaging network.

    Implementations own transport, pairing, encryption and credential storage.
    They deliver message batches as `on_messages(messages, upsert_type)` where
    `upsert_type` is "notify" for new messages, and connection changes as
    `on_connection_update(update)`.
    """

    @abstractmethod
    def start(self, on_messages: MessagesHandler, on_connection_update: ConnectionHandler) -> None:
        raise NotImplementedError()

    @abstractmethod
    def send(self, jid: str, content: Dict[str, Any]) -> Optional[str]:
        """
        Send content to a JID and return the message ID.

        Content is one of:
            {"text": str}
            {"image": bytes, "caption": str | None}
            {"template": dict, "variables": list[str], "images": list[bytes]}
        """
        raise NotImplementedError()

    @abstractmethod
    def logout(self) -> None:
        """Unpair the device and drop stored credentials."""
        raise NotImplementedError()

    def close(self) -> None:
        pass


SessionFactory = Callable[[], ChatSession]


def load_session_factory(path: str) -> SessionFactory:
    """Import a session factory from a 'package.module:attribute' path."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Session backend must look like 'module:factory': {path}")

    module = importlib.import_module(module_name)
    factory = getattr(module, attribute)
    if not callable(factory):
        raise TypeError(f"Session backend {path} is not callable")
    return factory
