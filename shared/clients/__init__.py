"""Shared clients for external services."""

from .supabase import StoreError, SupabaseClient

__all__ = [
    "StoreError",
    "SupabaseClient",
]
