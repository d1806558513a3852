"""Realify backend: metered AI image generation billed through Stripe."""
