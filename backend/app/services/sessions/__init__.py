"""Session domain services: store, engine, scheduler, notifier, leaderboard.

Everything here is imported by HTTP routes, socket handlers and CLI
commands, keeping transport concerns separated from the session lifecycle.
"""
