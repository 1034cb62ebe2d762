"""Main FastAPI application."""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from softphone.api import call, health, sms, socket, token, voice
from softphone.core.config import settings
from softphone.core.logging import setup_logging
from softphone.services.bridge.controller import ConferenceBridgeController
from softphone.services.relay.relay import StatusRelay
from softphone.services.telephony.provider import TwilioProvider


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging()
    yield
    # Let in-flight socket pushes finish before the loop goes away
    await app.state.status_relay.drain()


app = FastAPI(
    title="Softphone Bridge",
    description="Browser softphone backed by two-leg conference bridges",
    version="0.1.0",
    lifespan=lifespan,
)

# The widget is usually served from another origin (dev server, host page)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One provider, relay and controller per process, handed to routes by dependency
provider = TwilioProvider.from_settings(settings)
app.state.provider = provider
app.state.status_relay = StatusRelay(provider)
app.state.bridge_controller = ConferenceBridgeController(provider, settings)

app.include_router(health.router, tags=["health"])
app.include_router(token.router, tags=["token"])
app.include_router(call.router, tags=["call"])
app.include_router(voice.router, tags=["voice"])
app.include_router(sms.router, tags=["sms"])
app.include_router(socket.router, tags=["socket"])


def run() -> None:
    """Console entry point: serve the app on the configured host and port."""
    uvicorn.run(app, host=settings.host, port=settings.port)
