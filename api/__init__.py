"""
API Module for the Carrera Cars lead bot.

FastAPI application with routes for:
- WhatsApp and Facebook Lead Ads webhooks
- Scheduled follow-ups
- Health and metrics
"""
