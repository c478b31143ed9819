"""Helpers for RobustIRC networks: authenticated HTTP clients, failure injection, server discovery, status and health checks, and configuration updates."""

__version__ = "0.1.0"