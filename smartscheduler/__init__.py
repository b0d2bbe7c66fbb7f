"""
Smart Scheduler - availability and team assignment engine for booking links.
"""

__version__ = "0.1.0"
