#!/usr/bin/env python3
"""
Credential Parsers

Extracts structured credentials from an AWS shared-credentials file, a GCP
service-account key file, or the logged-in Azure CLI session.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from .accounts import AWSCredentials, GCPCredentials, AzureCredentials, Credentials
from .errors import CredentialError, UnsupportedProviderError
from .runner import CommandRunner

logger = logging.getLogger(__name__)


def parse_aws_credentials(text: str, profile: str = "default") -> AWSCredentials:
    """
    Parse an INI-style AWS credentials file

    Only keys inside the requested profile are read; comments (; or #) and
    blank lines are ignored.

    Args:
        text: Contents of the credentials file
        profile: Profile section to read

    Returns:
        AWSCredentials for the profile
    """
    current_profile = None
    values = {}

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith(';') or line.startswith('#'):
            continue

        if line.startswith('[') and line.endswith(']'):
            current_profile = line[1:-1].strip()
            continue

        if current_profile != profile or '=' not in line:
            continue

        key, value = line.split('=', 1)
        key = key.strip()
        if key in ('aws_access_key_id', 'aws_secret_access_key', 'region'):
            values[key] = value.strip()

    access_key_id = values.get('aws_access_key_id', '')
    secret_access_key = values.get('aws_secret_access_key', '')
    if not access_key_id or not secret_access_key:
        raise CredentialError(
            f"profile [{profile}] does not define aws_access_key_id and aws_secret_access_key"
        )

    return AWSCredentials(
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        region=values.get('region', '')
    )


def parse_gcp_credentials(text: str) -> GCPCredentials:
    """Parse a GCP service-account JSON key"""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CredentialError(f"unable to decode GCP credentials JSON: {e}")

    if not isinstance(data, dict):
        raise CredentialError("GCP credentials must be a JSON object")

    missing = [k for k in ('project_id', 'client_email') if not data.get(k)]
    if missing:
        raise CredentialError(f"GCP credentials are missing: {', '.join(missing)}")

    return GCPCredentials(
        project_id=data['project_id'],
        private_key_id=data.get('private_key_id', ''),
        private_key=data.get('private_key', ''),
        client_email=data['client_email'],
        client_id=data.get('client_id', '')
    )


def get_azure_credentials_from_cli(runner: Optional[CommandRunner] = None,
                                   az_binary: str = "az") -> AzureCredentials:
    """Read the active subscription from `az account show`"""
    runner = runner or CommandRunner()
    result = runner.run([az_binary, 'account', 'show', '--output', 'json'])
    if not result.ok:
        raise CredentialError(
            "failed to get Azure account info. Please ensure you're logged in "
            f"with 'az login': {result.output.strip()}"
        )

    try:
        info = json.loads(result.output)
    except json.JSONDecodeError as e:
        raise CredentialError(f"failed to parse Azure CLI output: {e}")

    if not info.get('id') or not info.get('tenantId'):
        raise CredentialError("Azure CLI output has no subscription id or tenant id")

    return AzureCredentials(
        subscription_id=info['id'],
        tenant_id=info['tenantId'],
        name=info.get('name', ''),
        environment=info.get('environmentName', '')
    )


def read_credentials(provider: str, path: Optional[str],
                     profile: str = "default",
                     runner: Optional[CommandRunner] = None) -> Credentials:
    """
    Read credentials for a provider

    Args:
        provider: aws, gcp or azure
        path: Credentials file; ignored for azure
        profile: AWS profile name
        runner: Command runner used for the az CLI

    Returns:
        Provider-specific credentials
    """
    if provider == 'azure':
        return get_azure_credentials_from_cli(runner)

    if provider not in ('aws', 'gcp'):
        raise UnsupportedProviderError(provider)

    if not path:
        raise CredentialError(f"a credentials file is required for {provider}")

    try:
        text = Path(path).expanduser().read_text()
    except OSError as e:
        raise CredentialError(f"failed to read credentials file {path}: {e}")

    logger.debug(f"Parsing {provider} credentials from {path}")
    if provider == 'aws':
        return parse_aws_credentials(text, profile=profile)
    return parse_gcp_credentials(text)


def gcp_key_document(creds: GCPCredentials) -> dict:
    """Rebuild the service-account key document from stored fields"""
    return {
        "type": "service_account",
        "project_id": creds.project_id,
        "private_key_id": creds.private_key_id,
        "private_key": creds.private_key,
        "client_email": creds.client_email,
        "client_id": creds.client_id,
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": "https://oauth2.googleapis.com/token",
        "auth_provider_x509_cert_url": "https://www.googleapis.com/oauth2/v1/certs",
        "client_x509_cert_url": f"https://www.googleapis.com/robot/v1/metadata/x509/{creds.client_email}",
    }
