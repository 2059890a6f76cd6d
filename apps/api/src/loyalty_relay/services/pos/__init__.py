"""Point-of-sale backend access."""

from .client import PosClient  # noqa: F401
