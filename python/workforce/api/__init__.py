"""HTTP surface for the workforce engine."""

from workforce.api.workforce_api import app

__all__ = ["app"]
