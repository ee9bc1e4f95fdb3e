"""
Social token health tasks

Daily sweep that refreshes platform tokens before they expire. Connections
whose refresh keeps failing are marked disconnected by the registry.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from backend.services.social_connection_service import SocialConnectionService
from backend.tasks.celery_app import celery_app
from backend.tasks.db_session_manager import get_celery_db_session

logger = logging.getLogger(__name__)


def run_refresh_sweep(window_hours: Optional[int] = None, session_factory=None, clients=None) -> Dict[str, Any]:
    """Synchronous entry point shared by the task and tests"""
    with get_celery_db_session(session_factory) as db:
        service = SocialConnectionService(db, clients=clients)
        return asyncio.run(_sweep(service, window_hours))


async def _sweep(service: SocialConnectionService, window_hours: Optional[int]) -> Dict[str, Any]:
    try:
        return await service.refresh_expiring(window_hours)
    finally:
        await service.aclose()


@celery_app.task(name="backend.tasks.token_health_tasks.refresh_expiring_tokens")
def refresh_expiring_tokens(window_hours: Optional[int] = None) -> Dict[str, Any]:
    logger.info("Starting social token refresh sweep")
    summary = run_refresh_sweep(window_hours)
    if summary["disconnected"]:
        logger.warning(f"{summary['disconnected']} social connection(s) need to be reconnected")
    return summary
