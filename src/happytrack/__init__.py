"""
Happy Track - TestRail and Jira activity reporting.

Collects per-user activity from TestRail and Jira, consolidates it into a
single timeline and exports it as CSV, optionally delivered by email.
"""

__version__ = "1.0.0"
