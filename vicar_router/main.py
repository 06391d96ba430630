import asyncio
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI

from vicar_router.config import get_settings
from vicar_router.dependencies import Services, build_services, get_services
from vicar_router.logging_config import get_logger, setup_logging
from vicar_router.routers import webhook
from vicar_router.services.conversation_store import ConversationStore

setup_logging(get_settings().effective_log_level())

sweeper_logger = get_logger("conversation_sweeper")


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_sweeper_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("CONVERSATION_SWEEPER_ENABLED"), default=True)


async def _sweeper_loop(store: ConversationStore, interval_seconds: float) -> None:
    interval_seconds = max(interval_seconds, 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            store.sweep()
        except asyncio.CancelledError:
            break
        except Exception as exc:
            sweeper_logger.error(
                "Conversation sweep failed",
                extra={"context": {"error": str(exc)}},
            )


def create_app(services: Optional[Services] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            app.state.services = build_services(get_settings())

        sweeper_task: asyncio.Task | None = None
        if _is_sweeper_enabled():
            sweeper_task = asyncio.create_task(
                _sweeper_loop(
                    app.state.services.store,
                    app.state.services.settings.conversation_sweep_interval_seconds,
                )
            )
            sweeper_logger.info("Conversation sweeper started")
        try:
            yield
        finally:
            if sweeper_task is not None:
                sweeper_task.cancel()
                try:
                    await sweeper_task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(
        title="VICAR Router",
        description="WhatsApp menu bot that hands conversations over to PBX queues",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.include_router(webhook.router)

    @app.get("/health")
    async def health(services: Services = Depends(get_services)):
        return {"status": "ok", "tracked_users": len(services.store)}

    return app


app = create_app()
