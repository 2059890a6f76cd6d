"""Celery task modules for the loyalty relay."""

# Import submodules so Celery autodiscovery registers tasks.
from . import relay as _relay  # noqa: F401

__all__ = ["_relay"]
