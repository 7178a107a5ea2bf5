"""Persistence collaborators for the loan services."""

from .base import LoanStore
from .memory import InMemoryLoanStore

__all__ = ["LoanStore", "InMemoryLoanStore"]
