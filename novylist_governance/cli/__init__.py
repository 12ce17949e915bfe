"""
Command-line interface for Novylist AI governance.
"""
