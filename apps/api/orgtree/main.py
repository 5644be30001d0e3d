from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from orgtree.api.routes import router as api_router
from orgtree.core.config import get_settings
from orgtree.core.database import Base, SessionLocal, engine
from orgtree.core.events import ORGANIZATION_EVENT_TYPES, SYSTEM_STARTED, InternalEvent, event_bus
from orgtree.logging import configure_logging
from orgtree.middleware.correlation_id import CorrelationIdMiddleware
from orgtree.middleware.request_logging import RequestLoggingMiddleware
from orgtree.organizations.seed import seed_demo_organizations
from orgtree.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("orgtree.lifecycle")


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_organization_event(event: InternalEvent) -> None:
    logger.info("organization_event", extra={"event_name": event.name, "organization_id": event.organization_id})


def _seed_demo_data() -> None:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        inserted = seed_demo_organizations(session)
        logger.info("demo_data_seeded", extra={"organizations_count": inserted})
    finally:
        session.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    event_bus.subscribe(SYSTEM_STARTED, _on_system_started)
    event_bus.subscribe(ORGANIZATION_EVENT_TYPES, _on_organization_event)
    if get_settings().seed_demo_data:
        _seed_demo_data()
    event_bus.publish(SYSTEM_STARTED, {"service": "orgtree"})
    yield


settings = get_settings()
app = FastAPI(title=settings.app_name, version="0.1.0", debug=settings.app_debug, lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
# Added last so it wraps request logging and every log line carries the id.
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel()

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
