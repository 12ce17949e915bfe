"""
Configuration for Novylist AI governance.

Policy tables and environment settings.
"""
