"""External API integrations.

This package contains:
- Provider protocol: the balance-provider contract and structured errors
- Exceptions: typed provider error hierarchy
- Plaid client: the plaid-python implementation of the protocol
"""

from integrations.provider_protocol import (
    BalanceProvider,
    ErrorCategory,
    ProviderSyncError,
)

__all__ = [
    "BalanceProvider",
    "ErrorCategory",
    "ProviderSyncError",
]
