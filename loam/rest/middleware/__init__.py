"""ASGI middleware installed on every Api."""
