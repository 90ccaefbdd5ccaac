"""
Import sub-modules so Celery can register their @app.task decorators.
"""

from archive.workers.tasks import slack  # noqa

__all__ = ["slack"]
