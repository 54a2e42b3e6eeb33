"""Adapters binding the core ports to SQLite, log transports and Discord."""
