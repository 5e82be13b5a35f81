import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.settings')

app = Celery('backend')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Task routing configuration
app.conf.task_routes = {
    # Billing tasks – renewals and subscription expiry
    "billing.tasks.process_due_renewals": {"queue": "billing"},
    "billing.tasks.expire_past_due_subscriptions": {"queue": "billing"},

    # Catalog tasks – hygiene sweeps
    "catalog.tasks.sweep_catalog_hygiene": {"queue": "catalog"},

    # Default queue
    '*': {'queue': 'default'},
}

app.conf.task_default_queue = 'default'

app.conf.update(
    # Serialization settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone settings
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_track_started=True,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Retry settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Monitoring settings
    worker_send_task_events=True,
    task_send_sent_event=True,

    # Queue settings
    task_queues={
        'default': {
            'exchange': 'default',
            'routing_key': 'default',
        },
        'billing': {
            'exchange': 'billing',
            'routing_key': 'billing',
        },
        'catalog': {
            'exchange': 'catalog',
            'routing_key': 'catalog',
        },
    },

    task_default_priority=5,
    task_ignore_result=False,
    task_store_errors_even_if_ignored=True,
)

# Set task-specific limits
app.conf.task_annotations = {
    'billing.tasks.process_due_renewals': {
        'rate_limit': '4/m',
        'time_limit': 600,
        'soft_time_limit': 540,
    },
    'catalog.tasks.sweep_catalog_hygiene': {
        'rate_limit': '1/m',
        'time_limit': 300,
        'soft_time_limit': 240,
    },
}

# Celery Beat schedule configuration
app.conf.beat_schedule = {
    "process_due_renewals_15min": {
        "task": "billing.tasks.process_due_renewals",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "billing", "priority": 2},
    },
    "expire_past_due_subscriptions_hourly": {
        "task": "billing.tasks.expire_past_due_subscriptions",
        "schedule": crontab(minute=5),
        "options": {"queue": "billing"},
    },
    "catalog_hygiene_sweep_hourly": {
        "task": "catalog.tasks.sweep_catalog_hygiene",
        "schedule": crontab(minute=30),
        "options": {"queue": "catalog"},
    },
}


# System health check task
@app.task(bind=True)
def health_check(self):
    """System health check task"""
    from django.db import DatabaseError, connection

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        return {
            'status': 'healthy',
            'timestamp': app.now(),
            'worker_id': self.request.id,
        }
    except DatabaseError as e:
        return {
            'status': 'unhealthy',
            'error': str(e),
            'timestamp': app.now(),
        }
