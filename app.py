#!/usr/bin/env python3
"""
SchoolChamps publishing engine API entry point
"""
import logging

from backend.core.app_factory import create_app, AppConfig
from backend.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()
environment = settings.environment.lower()

config = AppConfig(
    environment=environment,
    debug=environment == "development",
    enable_docs=environment != "production",
)
app = create_app(config)

logger.info("=== FastAPI App Startup Complete ===")
logger.info("Environment: {}".format(environment))
logger.info("Total routes: {}".format(len(app.routes)))

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
