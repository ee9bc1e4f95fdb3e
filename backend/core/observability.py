"""
Observability: Prometheus metrics and Sentry error tracking

Counters for the outcomes operators page on: publishes that charged a school,
refunds, posts that reached WordPress but were not recorded, per-platform
fan-out results, token refresh failures and ledger drift repaired by
reconciliation. The metrics endpoint is mounted by the app factory and kept
out of the OpenAPI schema.
"""
import logging
from typing import Optional

import prometheus_client
import sentry_sdk
from prometheus_client import Counter
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from starlette.responses import Response

from backend.core.config import get_settings

logger = logging.getLogger(__name__)

PUBLISH_OUTCOMES = Counter(
    'publish_outcomes_total',
    'Blog publish attempts by outcome',
    ['outcome']
)

PUBLISH_REFUNDS = Counter(
    'publish_refunds_total',
    'Publish costs refunded after a WordPress failure'
)

SOCIAL_PLATFORM_POSTS = Counter(
    'social_platform_posts_total',
    'Fan-out posts to social platforms',
    ['platform', 'status']
)

TOKEN_REFRESH = Counter(
    'oauth_token_refresh_total',
    'Platform token refresh attempts',
    ['platform', 'outcome']
)

LEDGER_REPAIRS = Counter(
    'ledger_balance_repairs_total',
    'Cached school balances corrected by reconciliation'
)


class PrometheusResponse(Response):
    """Prometheus exposition format"""
    media_type = prometheus_client.CONTENT_TYPE_LATEST


def metrics_response() -> PrometheusResponse:
    return PrometheusResponse(content=prometheus_client.generate_latest())


def initialize_sentry(environment: str, dsn: Optional[str] = None) -> bool:
    """Initialize Sentry when a DSN is configured; returns whether it was enabled"""
    settings = get_settings()
    dsn = dsn or settings.sentry_dsn
    if not dsn:
        logger.info("SENTRY_DSN not configured, skipping Sentry initialization")
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            CeleryIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
    )
    logger.info(f"Sentry initialized for {environment} environment")
    return True
