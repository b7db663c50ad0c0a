"""Django project package for continuous attendance location verification."""

from .celery import app as celery_app

__all__ = ["celery_app"]
