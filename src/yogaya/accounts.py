#!/usr/bin/env python3
"""
Cloud Account Store

This module owns cloud_accounts.conf: the JSON list of onboarded cloud accounts,
the account ID derivation used for duplicate detection, and the add flow that
ties credential parsing and validation together.
"""

import os
import json
import hashlib
import logging
from typing import Dict, List, Optional, Any, Union, Callable
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path

from jsonschema import validate, ValidationError

from .errors import (
    AccountStoreError,
    DuplicateAccountError,
    UnsupportedProviderError,
)

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ('aws', 'gcp', 'azure')


@dataclass
class AWSCredentials:
    """AWS access key pair plus home region"""
    access_key_id: str
    secret_access_key: str
    region: str = ""


@dataclass
class GCPCredentials:
    """Fields of a GCP service-account key"""
    project_id: str
    private_key_id: str = ""
    private_key: str = ""
    client_email: str = ""
    client_id: str = ""


@dataclass
class AzureCredentials:
    """Azure subscription as reported by the az CLI"""
    subscription_id: str
    tenant_id: str
    name: str = ""
    environment: str = ""


Credentials = Union[AWSCredentials, GCPCredentials, AzureCredentials]

CREDENTIAL_TYPES = {
    'aws': AWSCredentials,
    'gcp': GCPCredentials,
    'azure': AzureCredentials,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CloudAccount:
    """A single onboarded cloud account"""
    provider: str
    credentials: Credentials
    id: str = ""
    added_at: str = field(default_factory=_now)
    last_validated: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'provider': self.provider,
            'added_at': self.added_at,
            'last_validated': self.last_validated,
            'credentials': asdict(self.credentials),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CloudAccount':
        provider = data['provider']
        if provider not in CREDENTIAL_TYPES:
            raise UnsupportedProviderError(provider)

        credential_type = CREDENTIAL_TYPES[provider]
        known = credential_type.__dataclass_fields__.keys()
        raw = data.get('credentials') or {}
        try:
            credentials = credential_type(**{k: v for k, v in raw.items() if k in known})
        except TypeError as e:
            raise AccountStoreError(
                f"invalid credentials for {provider} account {data.get('id', '?')}: {e}"
            )

        return cls(
            provider=provider,
            credentials=credentials,
            id=data.get('id', ''),
            added_at=data.get('added_at') or _now(),
            last_validated=data.get('last_validated'),
        )


def generate_account_id(account: CloudAccount) -> str:
    """
    Derive the account ID from the fields that identify the account

    Returns:
        First 12 hex characters of the SHA-256 of the identifying fields
    """
    creds = account.credentials
    if account.provider == 'aws':
        material = creds.access_key_id + creds.region
    elif account.provider == 'gcp':
        material = creds.project_id + creds.client_email
    elif account.provider == 'azure':
        material = creds.subscription_id + creds.tenant_id
    else:
        raise UnsupportedProviderError(account.provider)

    return hashlib.sha256(material.encode('utf-8')).hexdigest()[:12]


class AccountStore:
    """Persistent store of cloud accounts backed by cloud_accounts.conf"""

    # JSON Schema for a single account record
    ACCOUNT_SCHEMA = {
        "type": "object",
        "required": ["provider", "credentials"],
        "properties": {
            "id": {"type": "string"},
            "provider": {"type": "string", "enum": list(SUPPORTED_PROVIDERS)},
            "added_at": {"type": ["string", "null"]},
            "last_validated": {"type": ["string", "null"]},
            "credentials": {"type": "object"}
        }
    }

    STORE_SCHEMA = {
        "type": "object",
        "properties": {
            "accounts": {"type": "array", "items": ACCOUNT_SCHEMA}
        }
    }

    def __init__(self, config_path: Union[str, Path]):
        """
        Initialize the store

        Args:
            config_path: Path to cloud_accounts.conf; a missing file is an empty store
        """
        self.config_path = Path(config_path).expanduser()
        self.accounts: List[CloudAccount] = []

    @classmethod
    def load(cls, config_path: Union[str, Path]) -> 'AccountStore':
        """Create a store and read cloud_accounts.conf if it exists"""
        store = cls(config_path)
        store._load()
        return store

    def _load(self):
        if not self.config_path.exists():
            logger.debug(f"No account store at {self.config_path}, starting empty")
            return

        try:
            with open(self.config_path, 'r') as f:
                text = f.read()
        except OSError as e:
            raise AccountStoreError(f"failed to read {self.config_path}: {e}")

        if not text.strip():
            return

        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise AccountStoreError(f"{self.config_path} is not valid JSON: {e}")

        # A bare list of records is accepted as well as {"accounts": [...]}
        if isinstance(document, list):
            document = {"accounts": document}

        try:
            validate(instance=document, schema=self.STORE_SCHEMA)
        except ValidationError as e:
            raise AccountStoreError(f"invalid account store {self.config_path}: {e.message}")

        self.accounts = [CloudAccount.from_dict(a) for a in document.get('accounts', [])]
        logger.debug(f"Loaded {len(self.accounts)} accounts from {self.config_path}")

    def save(self):
        """Write the store back to disk, readable by the owner only"""
        data = json.dumps({'accounts': [a.to_dict() for a in self.accounts]}, indent=2)

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as f:
            f.write(data)
        os.chmod(self.config_path, 0o600)

        logger.debug(f"Saved {len(self.accounts)} accounts to {self.config_path}")

    def is_duplicate(self, account: CloudAccount) -> bool:
        new_id = generate_account_id(account)
        return any(existing.id == new_id for existing in self.accounts)

    def get(self, account_id: str) -> Optional[CloudAccount]:
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None

    def remove(self, account_id: str) -> bool:
        """Remove an account by ID; returns False when it is not stored"""
        before = len(self.accounts)
        self.accounts = [a for a in self.accounts if a.id != account_id]
        return len(self.accounts) != before

    def list_accounts(self) -> List[CloudAccount]:
        return list(self.accounts)

    def add_account(self, account: CloudAccount) -> CloudAccount:
        """Stamp an already validated account with its ID, append and persist"""
        if self.is_duplicate(account):
            raise DuplicateAccountError(
                "duplicate account: credentials for this account already exist"
            )
        account.id = generate_account_id(account)
        self.accounts.append(account)
        self.save()
        return account

    def add_credentials(self, provider: str, credentials_path: Optional[str],
                        validate_credentials: bool = True,
                        profile: str = "default",
                        reader: Optional[Callable[..., Credentials]] = None,
                        validator: Optional[Callable[[str, Credentials], None]] = None) -> CloudAccount:
        """
        Onboard a new set of cloud credentials

        Args:
            provider: aws, gcp or azure
            credentials_path: Credentials file (unused for azure)
            validate_credentials: Whether to confirm the credentials against the provider
            profile: Profile to read from an AWS shared credentials file
            reader: Override for credential parsing (defaults to read_credentials)
            validator: Override for validation (defaults to validate_credentials)

        Returns:
            The stored CloudAccount
        """
        # Deferred: credentials and validators import this module
        from .credentials import read_credentials
        from .validators import validate_credentials as default_validator

        if provider not in SUPPORTED_PROVIDERS:
            raise UnsupportedProviderError(provider)

        reader = reader or read_credentials
        validator = validator or default_validator

        credentials = reader(provider, credentials_path, profile=profile)
        account = CloudAccount(provider=provider, credentials=credentials)

        if self.is_duplicate(account):
            raise DuplicateAccountError(
                "duplicate account: credentials for this account already exist"
            )

        if validate_credentials:
            validator(provider, credentials)
            account.last_validated = _now()
        else:
            logger.warning(f"Skipping credential validation for {provider} account")

        logger.info(f"Adding {provider} account {generate_account_id(account)}")
        return self.add_account(account)
