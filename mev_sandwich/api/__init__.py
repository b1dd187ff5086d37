"""Read-only health API"""

from mev_sandwich.api.app import create_app

__all__ = ["create_app"]
