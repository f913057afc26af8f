from __future__ import annotations

import os

from celery import Celery

from friendfinder.core.settings import Settings, get_settings


def create_celery_app(settings: Settings | None = None) -> Celery:
    """Create and configure the project's Celery application.

    Dev default is eager mode (inline execution). With eager mode disabled a
    broker URL (Redis) is required.
    """

    settings = settings or get_settings()

    app = Celery("friendfinder", include=["friendfinder.tasks.locations"])

    if settings.celery_eager:
        app.conf.update(
            task_always_eager=True,
            task_eager_propagates=True,
        )
        return app

    broker_url = settings.redis_url or os.getenv("REDIS_URL")
    if not broker_url:
        raise ValueError(
            "Celery eager mode is disabled (FRIENDFINDER_CELERY_EAGER=0) but no broker URL was provided. "
            "Set FRIENDFINDER_REDIS_URL or REDIS_URL."
        )

    app.conf.update(
        broker_url=broker_url,
        task_always_eager=False,
        task_eager_propagates=False,
    )
    return app


celery_app = create_celery_app()
