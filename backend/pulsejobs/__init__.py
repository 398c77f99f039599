"""
Pulse Jobs

Client-side lifecycle for long-running analysis jobs: submission, polling,
restart recovery and guest to user migration.
"""

__version__ = "1.0.0"
