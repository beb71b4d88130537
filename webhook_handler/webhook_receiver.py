"""Webhook receiver that verifies signed push notifications and triggers a deployment.

`create_app` builds a FastAPI app with a single POST endpoint (path taken from
settings). Requests must carry an `X-Hub-Signature-256: sha256=<hex>` header
computed over the raw body with the shared secret. Run it via
`python -m webhook_handler.webhook_cli serve` behind a TLS-enabled reverse proxy.
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .config import HEALTH_PATH, Settings
from .dispatcher import DispatchContext, ScriptDispatcher
from .notifier import security_alert
from .signature import SIGNATURE_HEADER, verify_signature

logger = logging.getLogger("webhook.receiver")

RETRY_AFTER_SECONDS = 30


def _client_host(request: Request) -> str:
    return request.client.host if request.client else 'unknown'


async def _read_limited(request: Request, limit: int) -> Optional[bytes]:
    """Buffer the raw body, or return None as soon as it exceeds `limit` bytes."""
    declared = request.headers.get('content-length')
    if declared is not None and declared.isdigit() and int(declared) > limit:
        return None
    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            return None
        chunks.append(chunk)
    return b''.join(chunks)


def _extract_ref(body: bytes) -> Optional[str]:
    # only used for logging and ref filtering, never for verification
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    if isinstance(payload, dict) and isinstance(payload.get('ref'), str):
        return payload['ref']
    return None


def create_app(settings: Settings, dispatcher: Optional[ScriptDispatcher] = None) -> FastAPI:
    app = FastAPI(title='webhook-handler', docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.dispatcher = dispatcher or ScriptDispatcher(settings)

    @app.get(HEALTH_PATH)
    async def health() -> Dict[str, Any]:
        return {'status': 'ok', 'busy': app.state.dispatcher.busy}

    @app.post(settings.webhook_path)
    async def receive_webhook(request: Request, background_tasks: BackgroundTasks):
        settings: Settings = request.app.state.settings
        dispatcher: ScriptDispatcher = request.app.state.dispatcher
        host = _client_host(request)

        body = await _read_limited(request, settings.max_body_bytes)
        if body is None:
            logger.warning("Rejected body over %d bytes from %s", settings.max_body_bytes, host)
            raise HTTPException(status_code=413, detail="Payload too large")

        signature = request.headers.get(SIGNATURE_HEADER)
        if not await run_in_threadpool(verify_signature, body, signature, settings.secret):
            logger.warning("Signature verification failed for request from %s", host)
            # alerting does blocking network I/O; keep it off the event loop
            background_tasks.add_task(
                security_alert,
                f"SECURITY ALERT: rejected unsigned or mis-signed webhook on {request.url.path} from {host}",
            )
            return JSONResponse(status_code=401, content={'detail': 'Unauthorized'})

        ref = _extract_ref(body)
        if settings.allowed_refs and ref not in settings.allowed_refs:
            logger.info("Ignoring verified webhook for ref=%s", ref)
            return {'status': 'ignored', 'ref': ref}

        context = DispatchContext(
            ref=ref,
            delivery=request.headers.get('X-GitHub-Delivery'),
            event=request.headers.get('X-GitHub-Event'),
            remote=host,
        )
        if not dispatcher.try_dispatch(context):
            return JSONResponse(
                status_code=503,
                content={'detail': 'Deployment already in progress'},
                headers={'Retry-After': str(RETRY_AFTER_SECONDS)},
            )
        logger.info("Deployment triggered by %s for ref=%s (delivery %s)", host, ref, context.delivery)
        return JSONResponse(status_code=202, content={'status': 'accepted', 'ref': ref})

    return app
