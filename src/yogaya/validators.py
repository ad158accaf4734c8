#!/usr/bin/env python3
"""
Credential Validators

Each validator performs one minimal read-only call against the provider to
confirm a credential set is usable before it is stored.
"""

import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from azure.core.exceptions import AzureError
from azure.identity import DefaultAzureCredential
from azure.mgmt.resource import ResourceManagementClient

from .accounts import AWSCredentials, GCPCredentials, AzureCredentials, Credentials
from .credentials import gcp_key_document
from .errors import CredentialValidationError, UnsupportedProviderError

logger = logging.getLogger(__name__)

GCP_READ_ONLY_SCOPE = "https://www.googleapis.com/auth/cloud-platform.read-only"


def validate_aws_credentials(creds: AWSCredentials):
    """List IAM users with the static key pair"""
    session = boto3.Session(
        aws_access_key_id=creds.access_key_id,
        aws_secret_access_key=creds.secret_access_key,
        region_name=creds.region or None
    )
    try:
        session.client('iam').list_users(MaxItems=1)
    except (ClientError, BotoCoreError) as e:
        raise CredentialValidationError(f"failed to validate AWS credentials: {e}")

    logger.debug(f"AWS key {creds.access_key_id[:4]}... validated")


def validate_gcp_credentials(creds: GCPCredentials):
    """Fetch an OAuth token for the service account with a read-only scope"""
    try:
        credentials = service_account.Credentials.from_service_account_info(
            gcp_key_document(creds),
            scopes=[GCP_READ_ONLY_SCOPE]
        )
        credentials.refresh(Request())
    except (GoogleAuthError, ValueError) as e:
        raise CredentialValidationError(f"failed to validate GCP credentials: {e}")

    logger.debug(f"GCP service account {creds.client_email} validated")


def validate_azure_credentials(creds: AzureCredentials):
    """Read the first page of resource groups in the subscription"""
    try:
        credential = DefaultAzureCredential()
        client = ResourceManagementClient(credential, creds.subscription_id)
        pages = client.resource_groups.list().by_page()
        next(pages, None)
    except AzureError as e:
        raise CredentialValidationError(f"failed to validate Azure credentials: {e}")

    logger.debug(f"Azure subscription {creds.subscription_id} validated")


def validate_credentials(provider: str, creds: Credentials):
    """
    Validate credentials for a provider

    Raises:
        CredentialValidationError: The provider rejected the credentials
        UnsupportedProviderError: Unknown provider
    """
    validators = {
        'aws': (AWSCredentials, validate_aws_credentials),
        'gcp': (GCPCredentials, validate_gcp_credentials),
        'azure': (AzureCredentials, validate_azure_credentials),
    }
    if provider not in validators:
        raise UnsupportedProviderError(provider)

    expected_type, validator = validators[provider]
    if not isinstance(creds, expected_type):
        raise CredentialValidationError(f"invalid {provider} credentials type")

    logger.info(f"Validating {provider} credentials")
    validator(creds)
