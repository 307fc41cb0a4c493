"""
Entry point for running keyspace-migrator as a module.

Enables execution via:
    python -m keyspace_migrator [command] [options]

This is equivalent to running the installed CLI:
    keyspace-migrator [command] [options]
"""

from keyspace_migrator.cli import app

if __name__ == "__main__":
    app()
