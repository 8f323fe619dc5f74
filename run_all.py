import multiprocessing

import uvicorn

from app.celery_app import celery_app
from core.config import get_settings


def run_admin_api():
    """Запуск админ-API"""
    settings = get_settings()
    uvicorn.run(
        "admin.app.main:app",
        host="0.0.0.0",
        port=settings.admin_port,
        log_level=settings.log_level.lower(),
    )


def run_worker():
    """Запуск Celery воркера вместе с beat (закрытие истекших аукционов)"""
    celery_app.worker_main(["worker", "--beat", "--loglevel=info"])


if __name__ == "__main__":
    api_process = multiprocessing.Process(target=run_admin_api)
    worker_process = multiprocessing.Process(target=run_worker)

    try:
        print("Запуск админ-API...")
        api_process.start()

        print("Запуск Celery воркера...")
        worker_process.start()

        api_process.join()
        worker_process.join()
    except KeyboardInterrupt:
        print("Завершение работы...")
    finally:
        for process in (api_process, worker_process):
            if process.is_alive():
                process.terminate()

        print("Все процессы остановлены.")
