"""
Configuración de Celery para tareas periódicas
Broker y backend en Redis; beat programa la expiración de entradas
"""
from celery import Celery
from kombu import Queue, Exchange
import logging

from shared.config import settings

logger = logging.getLogger(__name__)

REDIS_URL = settings.REDIS_URL
REDIS_MAX_CONNECTIONS = settings.CELERY_REDIS_MAX_CONNECTIONS

# Crear aplicación Celery
celery_app = Celery(
    "ingreso",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=[
        "services.ticket_management.tasks.ticket_tasks",
    ]
)

default_exchange = Exchange("default", type="direct")

celery_app.conf.task_queues = (
    Queue("default", default_exchange, routing_key="default"),
    # Operaciones batch sobre entradas
    Queue("low_priority", default_exchange, routing_key="low"),
)

celery_app.conf.task_routes = {
    "expire_past_event_tickets": {"queue": "low_priority"},
}

# Programación periódica (celery beat)
celery_app.conf.beat_schedule = {
    "expire-past-event-tickets": {
        "task": "expire_past_event_tickets",
        "schedule": settings.TICKET_EXPIRY_CHECK_SECONDS,
    },
}

celery_app.conf.update(
    # Serialización
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    # Límites de tiempo
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,

    worker_prefetch_multiplier=1,

    broker_pool_limit=REDIS_MAX_CONNECTIONS,
    redis_max_connections=REDIS_MAX_CONNECTIONS,

    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,

    # ACK late: confirmar tarea solo cuando termina
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,

    worker_concurrency=2,
    worker_max_tasks_per_child=1000,

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",
)

logger.info(
    "Celery configurado - Broker: %s, Pool limit: %d, Concurrency: %d",
    REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL,
    REDIS_MAX_CONNECTIONS,
    celery_app.conf.worker_concurrency
)
