from fastapi import FastAPI

from api.v1.actions import router as actions_router
from api.v1.runs import router as runs_router
from api.v1.session import router as session_router
from app.config import get_settings
from app.core.logging import configure_logging
from app.core.middleware import RunContextMiddleware


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="Action Engine", version="0.1.0")
    app.add_middleware(RunContextMiddleware)

    @app.get("/healthz")
    async def healthz():
        s = get_settings()
        return {
            "ok": True,
            "manifest_configured": bool(s.manifest_path),
            "chain_configured": bool(s.chain_config_path),
        }

    app.include_router(actions_router, prefix="/v1")
    app.include_router(runs_router, prefix="/v1")
    app.include_router(session_router, prefix="/v1")

    return app


app = create_app()
