"""
Storage for Novylist AI governance.

Redis-backed counters and cost records.
"""
