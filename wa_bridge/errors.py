"""Exceptions raised by the bridge."""


class BridgeError(Exception):
    """Base class for bridge errors."""


class NotConnectedError(BridgeError):
    """The chat session is missing or not connected."""


class MessageValidationError(BridgeError, ValueError):
    """A send request is missing its destination or content."""


class TemplateNotFoundError(BridgeError):
    """The CRM has no template matching name and language."""

    def __init__(self, name: str, language: str):
        super().__init__(f"Template {name} ({language}) not found")
        self.name = name
        self.language = language


class MediaDownloadError(BridgeError):
    """Media referenced by a send request could not be downloaded."""


class SendFailedError(BridgeError):
    """The chat session did not return a result for a send."""
