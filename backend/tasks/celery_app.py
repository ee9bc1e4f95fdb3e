import os
from celery import Celery
from celery.signals import worker_process_init
from backend.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "schoolchamps_engine",
    broker=settings.get_celery_broker_url(),
    backend=settings.get_celery_result_backend(),
    include=[
        "backend.tasks.token_health_tasks",  # Social token refresh sweep
        "backend.tasks.ledger_tasks",  # Nightly balance reconciliation
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=1800,  # 30 minutes
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,  # 8 minutes

    worker_concurrency=int(os.getenv('CELERY_WORKER_CONCURRENCY', '2')),
    worker_prefetch_multiplier=int(os.getenv('CELERY_WORKER_PREFETCH', '1')),
    worker_max_tasks_per_child=int(os.getenv('CELERY_MAX_TASKS_PER_CHILD', '100')),

    # Acknowledge only after completion so a lost worker re-runs the sweep
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    task_routes={
        'backend.tasks.token_health_tasks.*': {'queue': 'token_health'},
        'backend.tasks.ledger_tasks.*': {'queue': 'ledger'},
    },
    task_default_queue='default',
    task_create_missing_queues=True,
)

celery_app.conf.beat_schedule = {
    # Refresh social tokens that expire within the refresh window
    'token-refresh-sweep': {
        'task': 'backend.tasks.token_health_tasks.refresh_expiring_tokens',
        'schedule': 60.0 * 60.0 * 24,  # Daily
        'options': {'queue': 'token_health', 'expires': 1800},  # 30 min expiry
    },
    # Compare cached balances with the transaction log
    'ledger-reconciliation': {
        'task': 'backend.tasks.ledger_tasks.reconcile_all_balances',
        'schedule': 60.0 * 60.0 * 24,  # Daily
        'options': {'queue': 'ledger', 'expires': 3600},  # 1 hour expiry
    },
}


@worker_process_init.connect
def init_worker_observability(**kwargs):
    from backend.core.observability import initialize_sentry
    initialize_sentry(settings.environment)
