"""Default settings entry point; development and test runs use the base module."""

from .base import *  # noqa: F401,F403
