"""Entry point for running the order worker.

Deployments usually run `celery -A infrastructure.tasks worker -B`; this
script is for local runs and Procfile-style runners.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(
        argv=[
            "worker",
            "--beat",
            "--loglevel=INFO",
            "--hostname=orders-worker@%h",
        ]
    )


if __name__ == "__main__":
    main()
