"""
Relay Service - Chat relay for CI/CD webhooks

Philosophy: Bind, don't guess. Reply, don't converse.

This is a FastAPI service that receives chat activities, interprets the
fixed command vocabulary, binds conversations to server ids and replies
through the bot connector.
"""

from typing import Optional
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import httpx
import uvicorn
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from relay.config import config
from relay.adapters.botframework_adapter import normalize_activity
from relay.command_router import CommandRouter
from relay.logging_config import setup_logging
from relay.metrics import RelayMetrics
from relay.reply_channel import BotCredentialsTokenProvider, ConnectorReplyChannelFactory
from relay.storage.binding_store import RedisBindingStore
from relay.telemetry import LoggingEventRecorder, NATSEventRecorder

# Configure logging
logger = setup_logging(config.LOG_LEVEL)

# Initialize FastAPI app
app = FastAPI(
    title="Relay - BasalMind Chat Relay",
    description="Conversation to server id binding for CI/CD webhooks",
    version=config.VERSION
)

# Global state (initialized on startup)
binding_store: Optional[RedisBindingStore] = None
recorder = None
http_client: Optional[httpx.AsyncClient] = None
router: Optional[CommandRouter] = None
metrics: RelayMetrics = RelayMetrics()


@app.on_event("startup")
async def startup_event():
    """Initialize Relay components on startup."""
    global binding_store, recorder, http_client, router

    logger.info("🚀 Starting Relay service...")

    # 1. Binding store
    binding_store = RedisBindingStore.from_settings(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        password=config.REDIS_PASSWORD,
        db=config.REDIS_DB
    )
    health = await binding_store.health_check()
    if health.get("connected"):
        logger.info(f"✅ Redis connected: {health.get('host')}:{health.get('port')}")
    else:
        logger.error(f"❌ Redis connection failed: {health.get('error', 'unknown error')}")

    # 2. Telemetry (falls back to the log)
    nats_recorder = NATSEventRecorder(
        nats_url=config.NATS_URL,
        stream_name=config.TELEMETRY_STREAM
    )
    recorder = nats_recorder if await nats_recorder.connect() else LoggingEventRecorder()

    # 3. Reply channel
    http_client = httpx.AsyncClient(timeout=config.REPLY_TIMEOUT_SECONDS)
    token_provider = BotCredentialsTokenProvider(
        http_client,
        app_id=config.MICROSOFT_APP_ID,
        app_password=config.MICROSOFT_APP_PASSWORD
    )
    if token_provider.is_anonymous:
        logger.warning("⚠️ MICROSOFT_APP_ID not set - replies are sent unauthenticated")

    # 4. Router
    router = CommandRouter(
        store=binding_store,
        config=config,
        reply_factory=ConnectorReplyChannelFactory(http_client, token_provider),
        recorder=recorder,
        metrics=metrics,
    )

    logger.info(
        f"✅ Relay ready — "
        f"Redis: {'✅' if health.get('connected') else '⚠️'} | "
        f"NATS: {'✅' if isinstance(recorder, NATSEventRecorder) else '⚠️'}"
    )


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("🛑 Shutting down Relay")
    if router:
        await router.drain_telemetry()
    if isinstance(recorder, NATSEventRecorder):
        await recorder.disconnect()
    if http_client:
        await http_client.aclose()
    if binding_store:
        await binding_store.close()


@app.get("/")
async def root():
    """Root endpoint - service info."""
    return {
        "service": config.SERVICE_NAME,
        "version": config.VERSION,
        "philosophy": "Bind, don't guess. Reply, don't converse.",
        "status": "relaying",
        "endpoints": {
            "health": "/health",
            "metrics": "/metrics",
            "messages": "/api/messages"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    redis_health = await binding_store.health_check() if binding_store else {"connected": False}

    return {
        "status": "healthy" if redis_health.get("connected") else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "components": {
            "redis": redis_health,
            "telemetry": {
                "nats": isinstance(recorder, NATSEventRecorder) and recorder.is_connected
            }
        }
    }


@app.get("/metrics")
async def get_metrics():
    """Get Relay metrics."""
    return metrics.get_summary()


@app.post("/api/messages")
async def post_messages(request: Request):
    """
    Receive one activity and reply to it.

    Responsibilities:
    1. Normalize the raw activity
    2. Hand it to the command router
    3. Translate collaborator failures into a 500

    Inbound authentication happens upstream of this endpoint.
    """
    activity_id = None
    try:
        raw_activity = await request.json()
        event = normalize_activity(raw_activity)
        activity_id = event.activity_id

        logger.info(f"[ACTIVITY] {event.activity_type.value} in {event.conversation_id}")
        logger.debug(f"[ACTIVITY] {event.to_dict()}")

        if router is None:
            raise RuntimeError("Relay router not initialized")

        reply = await router.handle(event)

        return {
            "status": "replied" if reply is not None else "no_reply",
            "activity_id": activity_id,
            "activity_type": event.activity_type.value
        }

    except Exception as e:
        logger.error(f"[ERROR] Failed to handle activity {activity_id}: {e}", exc_info=True)
        metrics.record_error(type(e).__name__, str(e), activity_id)
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": str(e)}
        )


def main():
    """Run the Relay service."""
    logger.info(f"📡 Starting Relay on {config.HOST}:{config.PORT}")

    uvicorn.run(
        "relay.main:app",
        host=config.HOST,
        port=config.PORT,
        log_level=config.LOG_LEVEL.lower(),
        reload=False
    )


if __name__ == "__main__":
    main()
