"""
Expense Claims - Common Utilities
=================================

Shared utilities for all Lambda functions.
"""

from .supabase_client import SupabaseClient, SupabaseAuthError
from .token_manager import XeroTokenManager, TokenRefreshError
from .xero_client import XeroClient, XeroAPIError, get_connections
from .graph_client import MicrosoftGraphClient, GraphAPIError
from .secrets import get_secret, get_all_secrets

__all__ = [
    "SupabaseClient",
    "SupabaseAuthError",
    "XeroTokenManager",
    "TokenRefreshError",
    "XeroClient",
    "XeroAPIError",
    "get_connections",
    "MicrosoftGraphClient",
    "GraphAPIError",
    "get_secret",
    "get_all_secrets",
]
