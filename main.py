import json
import logging
from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse

import db
from app.api.admin import router as admin_router
from app.logging_setup import configure_logging
from app.services import webhook_handler
from app.types.line_contract import WebhookEnvelope
from config import settings

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tables are managed via Alembic migrations; the engine is created lazily
    yield
    await db.dispose_engine()


app = FastAPI(lifespan=lifespan)
app.include_router(admin_router)


@app.get("/", response_class=PlainTextResponse)
async def health_check():
    return "OK"


# --------------------------------------------
# Endpoint
# --------------------------------------------
@app.post("/webhook/line")
async def line_webhook(request: Request, background: BackgroundTasks):
    raw_body = await request.body()
    sig = request.headers.get(webhook_handler.SIGNATURE_HEADER)

    if not webhook_handler.verify_signature(raw_body, sig, settings.LINE_CHANNEL_SECRET):
        logger.warning("Rejected LINE webhook: %s signature", "missing" if not sig else "invalid")
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid signature")

    try:
        envelope = WebhookEnvelope.model_validate(json.loads(raw_body))
    except ValueError:
        # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
        logger.warning("Rejected LINE webhook: malformed body")
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Malformed webhook body")

    logger.info("Received LINE webhook with %d events", len(envelope.events))
    if envelope.events:
        background.add_task(webhook_handler.process_envelope, envelope.events)
    return Response(status_code=status.HTTP_200_OK)


if __name__ == "__main__":  # pragma: no cover
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
