import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from dal.image_dal import ImageDAL
from routes.auth_route import router as auth_router
from routes.image_route import router as image_router
from services.rate_limiter import FixedWindowRateLimiter
from services.task_runner import DetachedTaskRunner
from services.telegram_gateway import TelegramGateway
from utils.database_init import AsyncDatabaseInitializer
from utils.exceptions import ImageHostError, image_host_exception_handler
from utils.settings import Settings

load_dotenv()  # Load environment variables from .env file if present

LOGGER = logging.getLogger(__name__)


def _build_lifespan(settings: Optional[Settings], gateway: Optional[TelegramGateway]):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan manager to initialize:
          - the SQLite metadata store (at DATABASE_DIR/app.db)
          - the external file gateway
          - the detached task runner and the login rate limiter
        and attach them to `app.state`.
        """
        app_settings = settings or Settings.from_env()
        logging.basicConfig(
            level=app_settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        app.state.settings = app_settings

        db_initializer = AsyncDatabaseInitializer(app_settings.database_dir, reset=app_settings.reset_database_on_startup)
        await db_initializer.ensure_database()
        app.state.db_initializer = db_initializer
        app.state.image_dal = ImageDAL(db_initializer)

        app_gateway = gateway or TelegramGateway(
            app_settings.tg_bot_token,
            app_settings.tg_chat_id,
            api_base=app_settings.tg_api_base,
            timeout=app_settings.gateway_timeout,
        )
        if not app_settings.tg_bot_token or not app_settings.tg_chat_id:
            LOGGER.warning("TG_BOT_TOKEN or TG_CHAT_ID is not set; uploads will fail")
        app.state.gateway = app_gateway

        app.state.task_runner = DetachedTaskRunner()
        app.state.login_limiter = FixedWindowRateLimiter(
            max_hits=app_settings.login_max_attempts,
            window_seconds=app_settings.login_window_seconds,
        )

        try:
            yield
        finally:
            await app.state.task_runner.drain()
            await app_gateway.aclose()

    return lifespan


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTPException with the `{success, message}` envelope."""
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.detail})


def create_app(settings: Optional[Settings] = None, gateway: Optional[TelegramGateway] = None) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    Args:
        settings: Optional settings; read from the environment when omitted.
        gateway: Optional preconfigured gateway (tests inject a fake).
    """
    app = FastAPI(title="Image Host", lifespan=_build_lifespan(settings, gateway))

    app.add_exception_handler(ImageHostError, image_host_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check that reports database and gateway configuration.
        """
        has_db = hasattr(request.app.state, "db_initializer")
        gateway_ready = bool(getattr(request.app.state, "gateway", None) and request.app.state.gateway.bot_token)
        return {"ok": True, "db_initialized": has_db, "gateway_configured": gateway_ready}

    # Register application routers
    app.include_router(image_router)
    app.include_router(auth_router)

    return app


app = create_app()
