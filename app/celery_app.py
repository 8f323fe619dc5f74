from celery import Celery

from core.config import get_settings

settings = get_settings()

# Определяем URL брокера и бэкенда результатов
broker_url = settings.celery_broker_url or f"redis://{settings.redis_host}:{settings.redis_port}/0"
result_backend = settings.celery_result_backend or f"redis://{settings.redis_host}:{settings.redis_port}/1"

# Создаем экземпляр Celery
celery_app = Celery(
    'freightbid',
    broker=broker_url,
    backend=result_backend,
    include=['app.tasks']
)

# Настройки Celery
celery_app.conf.update(
    broker_url=broker_url,
    result_backend=result_backend,

    # Настройки задач
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Настройки воркера
    worker_prefetch_multiplier=1,
    task_acks_late=True,

    # Настройки повторных попыток
    task_default_retry_delay=60,
    task_max_retries=3,

    task_track_started=True,

    # Закрытие истекших аукционов раз в минуту
    beat_schedule={
        'close-expired-auctions': {
            'task': 'close_expired_auctions',
            'schedule': 60.0,
        },
    },
)

if __name__ == '__main__':
    celery_app.start()
