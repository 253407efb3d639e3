# Celery instance is defined in inv_project/celery.py
# It points the worker at Django settings
from .celery import celery_app

__all__ = ("celery_app",)

""" Run workers with "celery -A inv_project worker -l info"
    (add "-B" to also run the audit review sweep on schedule) """
