"""
Novylist AI request governance.

Rate limits, token budgets and cost accounting for AI-assisted writing
features.
"""

__version__ = "0.1.0"
