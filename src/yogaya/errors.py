#!/usr/bin/env python3
"""
Exception hierarchy for yogaya

Library code raises these; only the command line interface catches them.
"""

from typing import List, Optional


class YogayaError(Exception):
    """Base class for all yogaya errors"""


class UnsupportedProviderError(YogayaError):
    """Raised for a provider name yogaya does not know about"""

    def __init__(self, provider: str):
        super().__init__(f"unsupported provider: {provider}")
        self.provider = provider


class CredentialError(YogayaError):
    """Raised when a credentials source cannot be read or parsed"""


class CredentialValidationError(YogayaError):
    """Raised when a provider rejects a set of credentials"""


class DuplicateAccountError(YogayaError):
    """Raised when an account with the same derived ID is already stored"""


class AccountStoreError(YogayaError):
    """Raised when cloud_accounts.conf is unreadable or malformed"""


class CommandError(YogayaError):
    """Raised when an external command exits non-zero"""

    def __init__(self, message: str, output: str = ""):
        super().__init__(f"{message}\nOutput: {output}" if output else message)
        self.output = output


class GenerationError(YogayaError):
    """
    Aggregate failure of an import run

    Carries every per-region failure collected while the run was in flight.
    """

    def __init__(self, provider: str, account_id: str,
                 failures: Optional[List[str]] = None):
        self.provider = provider
        self.account_id = account_id
        self.failures = failures or []
        details = "; ".join(self.failures)
        super().__init__(
            f"encountered errors during {provider} Terraformer process for "
            f"account {account_id}: {details}"
        )
