from celery import Celery
from config import config

# NOTE: You must have a Celery broker running (e.g., Redis or RabbitMQ)
# unless CELERY_TASK_ALWAYS_EAGER is set, which runs tasks in-process.
BROKER_URL = config.celery_broker_url
BACKEND_URL = config.celery_backend_url

celery_app = Celery(
    "event_tasks",
    broker=BROKER_URL,
    backend=BACKEND_URL,
    # This ensures the tasks are loaded when the worker starts
    include=["celery_tasks.event_tasks"]
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Local development and tests run ingestion inline instead of through the broker
    task_always_eager=config.celery_task_always_eager,
    task_eager_propagates=config.celery_task_always_eager,

    # === Producer-Side (Sending Message) Retry Settings ===
    # Retry publishing when the API process cannot reach the broker.
    task_publish_retry=True,
    task_publish_retry_policy={
        'max_retries': 10,       # Maximum number of retries before giving up
        'interval_start': 0.5,   # Initial wait time in seconds
        'interval_step': 0.5,    # Amount to increase wait time by
        'interval_max': 5,       # Maximum wait time
    },
)

celery_app.conf.task_routes = {
    # analytics ingestion has its own queue so a backlog never delays other work
    'celery_tasks.event_tasks.*': {'queue': 'analytics'},
}
