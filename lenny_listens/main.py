import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from lenny_listens.config import Settings, get_settings
from lenny_listens.deps import Services, build_services
from lenny_listens.routers import webhook, perspective, generate, admin

def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings.validate_for_startup()

    app = FastAPI(title="Lenny Listens", version="1.0.0")
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "service": "lenny-listens"}

    app.include_router(webhook.router, prefix="/webhook", tags=["webhook"])
    app.include_router(perspective.router, prefix="/perspective", tags=["perspective"])
    app.include_router(generate.router, prefix="/generate", tags=["generate"])
    app.include_router(admin.router, prefix="/admin", tags=["admin"])
    return app
