"""
Application Factory Pattern

Creates FastAPI app instances with configurable settings for different
environments, so tests can build an app with their own database and clients.
"""
import sys
import logging
from contextlib import asynccontextmanager
from typing import Optional, List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.core.api_version import get_api_version
from backend.core.config import get_settings
from backend.core.exceptions import WorkflowError
from backend.core.http_client import close_http_client

logger = logging.getLogger(__name__)


class AppConfig:
    """Configuration for FastAPI application."""

    def __init__(
        self,
        environment: str = None,
        title: str = "SchoolChamps Publishing Engine",
        description: str = "Submission-to-WordPress publishing workflow with coin ledger and social fan-out",
        version: str = "1.0.0",
        debug: bool = None,
        enable_docs: bool = None,
        cors_origins: List[str] = None,
        create_tables: bool = None,
    ):
        settings = get_settings()
        self.environment = (environment or settings.environment).lower()

        self.title = title
        self.description = description
        self.version = version
        self.debug = debug if debug is not None else (self.environment == "development")

        self.enable_docs = enable_docs if enable_docs is not None else (self.environment != "production")
        self.docs_url = "/docs" if self.enable_docs else None
        self.redoc_url = "/redoc" if self.enable_docs else None

        self.cors_origins = cors_origins or settings.get_cors_origins()
        # Production schema is managed by Alembic
        self.create_tables = create_tables if create_tables is not None else (self.environment == "development")

        self.api_version = get_api_version()


def setup_middleware(app: FastAPI, config: AppConfig) -> None:
    """Setup CORS for the dashboard frontend."""
    logger.info("CORS allowed origins: {}".format(config.cors_origins))

    if "*" in config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"]
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Accept", "Content-Type", "Authorization", "X-Requested-With"]
        )


def setup_routers(app: FastAPI) -> List[str]:
    """Include every router from the registry."""
    from backend.api._registry import ROUTERS

    loaded_routers = []
    for router in ROUTERS:
        app.include_router(router)
        loaded_routers.append(router.prefix)
        logger.info("Router '{}' loaded".format(router.prefix))
    return loaded_routers


def setup_exception_handlers(app: FastAPI) -> None:
    """Map typed workflow errors onto HTTP responses."""

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError):
        if exc.http_status >= 500:
            logger.error("{} {} failed: {} ({})".format(request.method, request.url.path, exc.code, exc.message))
        else:
            logger.info("{} {} rejected: {} ({})".format(request.method, request.url.path, exc.code, exc.message))
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def setup_health_endpoints(app: FastAPI, config: AppConfig, loaded_routers: List[str]) -> None:

    @app.get("/")
    async def root():
        return {
            "name": config.title,
            "version": config.version,
            "status": "operational",
            "environment": config.environment,
            "api_version": config.api_version,
        }

    @app.get("/health")
    async def health_check():
        settings = get_settings()
        return {
            "status": "healthy",
            "version": config.version,
            "api_version": config.api_version,
            "python_version": "{}.{}.{}".format(
                sys.version_info.major, sys.version_info.minor, sys.version_info.micro
            ),
            "environment": config.environment,
            "routers": loaded_routers,
            "services": {
                "wordpress": "configured" if settings.wordpress_base_url else "not_configured",
                "draft_generator": "available" if settings.openai_api_key else "missing_key",
                "payments": "configured" if settings.razorpay_key_id else "not_configured",
            },
        }


def setup_metrics_endpoint(app: FastAPI) -> None:
    from backend.core.observability import metrics_response

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return metrics_response()


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """
    Create FastAPI application with factory pattern.

    Args:
        config: Optional configuration object

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = AppConfig()

    if config.environment == "production":
        from backend.core.logging import setup_production_logging
        setup_production_logging()
    else:
        from backend.core.logging import setup_development_logging
        setup_development_logging()

    logger.info("Creating FastAPI application")
    logger.info("Environment: {}".format(config.environment))

    if config.environment != "test":
        from backend.core.observability import initialize_sentry
        initialize_sentry(config.environment)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if config.create_tables:
            from backend.db.database import create_tables
            create_tables()
        yield
        await close_http_client()

    app = FastAPI(
        title=config.title,
        description=config.description,
        version=config.version,
        docs_url=config.docs_url,
        redoc_url=config.redoc_url,
        debug=config.debug,
        lifespan=lifespan,
    )

    setup_middleware(app, config)
    loaded_routers = setup_routers(app)
    setup_exception_handlers(app)
    setup_health_endpoints(app, config, loaded_routers)
    setup_metrics_endpoint(app)

    logger.info("Loaded {} routers, {} routes".format(len(loaded_routers), len(app.routes)))
    return app


def create_test_app(cors_origins: List[str] = None) -> FastAPI:
    """Create app configured for testing."""
    config = AppConfig(
        environment="test",
        debug=True,
        enable_docs=False,
        cors_origins=cors_origins or ["http://testserver"],
        create_tables=False,
    )
    return create_app(config)
