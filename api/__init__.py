"""HTTP surface for the WhatsApp gateway."""

from .app import create_app

__all__ = ["create_app"]
