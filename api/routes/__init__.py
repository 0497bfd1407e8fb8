"""
API Routes for the Carrera Cars lead bot.
"""

from . import webhooks, followups

__all__ = ["webhooks", "followups"]
