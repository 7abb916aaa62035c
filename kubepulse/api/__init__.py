"""REST API exposing the incident views and the live pod list."""

from kubepulse.api.app import create_app

__all__ = ["create_app"]
