"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from retention_rules.api.routes import router as rules_router
from retention_rules.classify import ClassificationEngine
from retention_rules.config import Settings, get_settings
from retention_rules.db import build_engine, ensure_schema
from retention_rules.exceptions import ValidationError
from retention_rules.rules import RuleMutationEngine, RuleSetCache


def create_app(engine=None, *, settings: Settings | None = None) -> FastAPI:
    """Build the HTTP app around one engine.

    Args:
        engine: SQLAlchemy engine; built from settings when None.
        settings: Application settings. If None, uses cached settings.
    """

    settings = settings or get_settings()
    engine = engine or build_engine(settings=settings)
    ensure_schema(engine)

    cache = RuleSetCache.from_settings(settings)

    app = FastAPI(title="Retention Rules", debug=settings.debug)
    app.state.engine = engine
    app.state.cache = cache
    app.state.mutations = RuleMutationEngine(engine, cache=cache)
    app.state.classifier = ClassificationEngine(engine, cache=cache)

    @app.exception_handler(ValidationError)
    async def _validation_error(_request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(rules_router)
    return app
