"""Zvest loyalty platform API."""
