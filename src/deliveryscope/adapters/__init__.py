"""Adapters binding the core ports to SQLite, Telegram, and file exports."""
