"""Builds a fully wired bridge from settings."""
from typing import Optional

from wa_bridge.audit import AuditLogger, PostgresAuditSink
from wa_bridge.client import WhatsAppBridge
from wa_bridge.crm_client import CRMClient
from wa_bridge.dedupe import DedupCache
from wa_bridge.inbound import InboundForwarder
from wa_bridge.media_cache import MediaCache
from wa_bridge.outbound import OutboundForwarder
from wa_bridge.queue.send_queue import SendQueue
from wa_bridge.session import SessionFactory, load_session_factory
from wa_bridge.settings import Settings
from wa_bridge.webhook_resolver import INBOUND_SETTINGS_FIELD, OUTBOUND_SETTINGS_FIELD, WebhookResolver


def build_audit_logger(settings: Settings) -> AuditLogger:
    sink = PostgresAuditSink(settings.database_url) if settings.database_url else None
    return AuditLogger(sink)


def build_bridge(
    settings: Settings,
    session_factory: Optional[SessionFactory] = None,
    audit: Optional[AuditLogger] = None,
) -> WhatsAppBridge:
    """Construct every component once; each forwarder gets its own cache and resolver."""
    if session_factory is None:
        session_factory = load_session_factory(settings.session_backend or "")
    if audit is None:
        audit = build_audit_logger(settings)

    crm = CRMClient(settings.crm_url, settings.crm_api_key)

    inbound = InboundForwarder(
        crm=crm,
        resolver=WebhookResolver(
            "inbound", crm, INBOUND_SETTINGS_FIELD, override=settings.inbound_webhook_override
        ),
        dedupe=DedupCache(max_size=settings.dedupe_cache_size, ttl=settings.dedupe_ttl),
        audit=audit,
    )
    outbound = OutboundForwarder(
        crm=crm,
        resolver=WebhookResolver(
            "outbound", crm, OUTBOUND_SETTINGS_FIELD, override=settings.outbound_webhook_override
        ),
        dedupe=DedupCache(max_size=settings.dedupe_cache_size, ttl=settings.dedupe_ttl),
        audit=audit,
    )

    return WhatsAppBridge(
        session_factory=session_factory,
        crm=crm,
        send_queue=SendQueue(max_retries=settings.max_retries, retry_delay=settings.retry_delay),
        inbound=inbound,
        outbound=outbound,
        media_cache=MediaCache(
            fetch=crm.download,
            max_bytes=settings.image_cache_max_bytes,
            ttl=settings.image_cache_ttl,
        ),
        audit=audit,
    )
