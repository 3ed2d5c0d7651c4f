"""HTTP API in front of the bridge."""
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from wa_bridge.client import SendMessageOptions, TemplateRef, WhatsAppBridge
from wa_bridge.errors import MessageValidationError, NotConnectedError
from wa_bridge.logging_conf import logger
from wa_bridge.rate_limit import RateLimiter
from wa_bridge.settings import Settings


class ImageBody(BaseModel):
    url: str


class TemplateBody(BaseModel):
    name: str
    language: str
    variables: List[str] = []


class SendRequest(BaseModel):
    to: Optional[str] = None
    text: Optional[str] = None
    image: Optional[ImageBody] = None
    caption: Optional[str] = None
    template: Optional[TemplateBody] = None


def create_app(bridge: WhatsAppBridge, settings: Settings) -> FastAPI:
    app = FastAPI(
        title="wa-bridge",
        description="Bridges a WhatsApp session to the CRM",
        version="0.1.0",
    )
    app.state.bridge = bridge
    limiter = RateLimiter(
        window=settings.rate_limit_window_ms / 1000,
        max_requests=settings.rate_limit_max_requests,
    )

    if not settings.api_key:
        logger.warning("API_KEY not set. Service will be insecure!")

    def require_api_key(x_api_key: Optional[str] = Header(default=None)):
        if not settings.api_key:
            logger.warning("API_KEY not configured, allowing request")
            return
        if not x_api_key:
            logger.warning("Missing X-API-Key header")
            raise HTTPException(status_code=401, detail="Missing API key")
        if x_api_key != settings.api_key:
            logger.warning("Invalid API key provided")
            raise HTTPException(status_code=403, detail="Invalid API key")

    def rate_limit(request: Request):
        client_ip = request.client.host if request.client else "unknown"
        if not limiter.allow(client_ip):
            logger.warning(f"Rate limit exceeded for {client_ip}")
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded: maximum {limiter.max_requests} requests per {limiter.window:g} seconds",
            )

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.get("/health")
    def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/status", dependencies=[Depends(require_api_key)])
    def status():
        return bridge.get_status()

    @app.post("/webhooks/refresh", dependencies=[Depends(require_api_key)])
    def refresh_webhooks():
        bridge.refresh_webhooks()
        return {
            "success": True,
            "inbound": bridge.inbound.resolver.address,
            "outbound": bridge.outbound.resolver.address,
        }

    @app.post("/disconnect", dependencies=[Depends(require_api_key)])
    def disconnect():
        try:
            bridge.disconnect()
        except Exception as e:
            logger.error(f"Failed to disconnect: {e}", exc_info=True)
            bridge.audit.log("disconnect", {"success": False, "error": str(e)})
            return JSONResponse(status_code=500, content={"error": "Failed to disconnect"})

        bridge.audit.log("disconnect", {"success": True})
        return {"success": True, "message": "Disconnected successfully"}

    @app.post("/send", dependencies=[Depends(require_api_key), Depends(rate_limit)])
    def send(body: SendRequest):
        options = SendMessageOptions(
            to=body.to or "",
            text=body.text,
            image_url=body.image.url if body.image else None,
            caption=body.caption,
            template=TemplateRef(body.template.name, body.template.language, body.template.variables)
            if body.template else None,
        )

        try:
            message_id = bridge.send_message(options)
        except MessageValidationError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        except NotConnectedError as e:
            bridge.audit.log("send", {"success": False, "error": str(e), "to": body.to})
            return JSONResponse(status_code=503, content={"error": str(e)})
        except Exception as e:
            logger.error(f"Failed to send message to {body.to}: {e}", exc_info=True)
            bridge.audit.log("send", {"success": False, "error": str(e), "to": body.to})
            return JSONResponse(status_code=500, content={"error": str(e) or "Failed to send message"})

        bridge.audit.log("send", {
            "to": body.to,
            "messageId": message_id,
            "hasText": bool(body.text),
            "hasImage": bool(body.image),
            "hasTemplate": bool(body.template),
        })
        return {"success": True, "messageId": message_id}

    return app
