"""FastAPI application entrypoint for the Clova/LINE ventriloquist bridge."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .config import Settings, settings as default_settings
from .orchestrators.session_loop import SESSION_ORCHESTRATOR, wait_for_line_input
from .orchestrators.template_loop import (
    SEND_TEMPLATES_ACTIVITY,
    TEMPLATE_ORCHESTRATOR,
    make_template,
    send_templates,
)
from .routers import clova, line, sessions
from .services.chat_dispatch import ChatDispatcher
from .services.housekeeping import HistoryCleaner
from .services.instance_store import SupabaseInstanceStore
from .services.line_messaging import LineMessagingClient
from .services.orchestration import DurableOrchestrationEngine
from .services.voice_dispatch import VoiceDispatcher

logging.basicConfig(level=default_settings.log_level.upper())
logger = logging.getLogger(__name__)


def build_engine(line_client: LineMessagingClient, store: Optional[SupabaseInstanceStore] = None) -> DurableOrchestrationEngine:
    """Create an engine with the session and template loops registered."""

    engine = DurableOrchestrationEngine(store=store)
    engine.register_orchestrator(SESSION_ORCHESTRATOR, wait_for_line_input)
    engine.register_orchestrator(TEMPLATE_ORCHESTRATOR, make_template)
    engine.register_activity(SEND_TEMPLATES_ACTIVITY, partial(send_templates, line_client))
    return engine


def create_app(
    settings: Optional[Settings] = None,
    *,
    line_client: Optional[LineMessagingClient] = None,
    store: Optional[SupabaseInstanceStore] = None,
    run_housekeeping: bool = True,
) -> FastAPI:
    """Instantiate and configure the FastAPI application."""

    cfg = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        client = line_client or LineMessagingClient(settings=cfg)
        instance_store = store if store is not None else SupabaseInstanceStore(cfg)
        if not instance_store.enabled:
            logger.warning("Supabase not configured; orchestration state is memory-only")
        if not client.verifies_signatures:
            logger.warning("LINE_CHANNEL_SECRET not set; webhook signatures are not verified")

        engine = build_engine(client, instance_store)
        await engine.resume()

        app.state.line_client = client
        app.state.engine = engine
        app.state.voice_dispatcher = VoiceDispatcher(engine, cfg)
        app.state.chat_dispatcher = ChatDispatcher(engine, client, cfg)

        cleaner_task = None
        if run_housekeeping:
            cleaner_task = asyncio.create_task(HistoryCleaner(engine, cfg).run_forever(), name="history-cleaner")
        try:
            yield
        finally:
            if cleaner_task is not None:
                cleaner_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await cleaner_task
            await engine.shutdown()
            if line_client is None:
                await client.aclose()

    application = FastAPI(
        title="Clova Ventriloquist",
        description="Speaks LINE messages through a long-lived Clova session.",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.include_router(clova.router)
    application.include_router(line.router)
    application.include_router(sessions.router)

    @application.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=default_settings.host, port=default_settings.port)
