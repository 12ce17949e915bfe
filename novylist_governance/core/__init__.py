"""
Core modules for Novylist AI governance.

This package contains the rate limiter, token budget tracker, cost
tracker and pricing used to gate calls to the completion API.
"""
