"""
SDK for Novylist AI governance.

Provides the governed entry point request handlers call.
"""

from .openai_client import CompletionOrchestrator
from .results import CompletionResult, ErrorCode

__all__ = ["CompletionOrchestrator", "CompletionResult", "ErrorCode"]
