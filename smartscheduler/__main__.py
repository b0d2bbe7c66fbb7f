"""
Convenience entry point for running smartscheduler as a module.

Usage: python -m smartscheduler [command] [options]
"""

from .cli.app import app

if __name__ == "__main__":
    app()
