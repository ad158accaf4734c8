#!/usr/bin/env python3
"""
Region and Resource Catalogs

Static and dynamically fetched lists of regions and Terraformer resource names
per cloud provider.
"""

import re
import json
import logging
from typing import Dict, List, Optional, Iterable
from dataclasses import dataclass, field

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .accounts import AWSCredentials

logger = logging.getLogger(__name__)


# AWS Regions as of April 2024
AWS_REGIONS = [
    "us-east-1",
    "us-east-2",
    "us-west-1",
    "us-west-2",
    "af-south-1",
    "ap-east-1",
    "ap-south-2",
    "ap-southeast-3",
    "ap-southeast-5",
    "ap-southeast-4",
    "ap-south-1",
    "ap-northeast-3",
    "ap-northeast-2",
    "ap-southeast-1",
    "ap-southeast-2",
    "ap-northeast-1",
    "ca-central-1",
    "ca-west-1",
    "cn-north-1",
    "cn-northwest-1",
    "eu-central-1",
    "eu-west-1",
    "eu-west-2",
    "eu-south-1",
    "eu-west-3",
    "eu-south-2",
    "eu-north-1",
    "eu-central-2",
    "il-central-1",
    "me-south-1",
    "me-central-1",
    "sa-east-1",
]

# Terraformer AWS resource names
AWS_SERVICES = [
    "accessanalyzer", "acm", "alb", "api_gateway", "appsync", "auto_scaling",
    "batch", "budgets", "cloud9", "cloudformation", "cloudfront", "cloudhsm",
    "cloudtrail", "cloudwatch", "codebuild", "codecommit", "codedeploy",
    "codepipeline", "cognito", "config", "customer_gateway", "datapipeline",
    "devicefarm", "docdb", "dynamodb", "ebs", "ec2_instance", "ecr", "ecrpublic",
    "ecs", "efs", "eip", "eks", "elastic_beanstalk", "elasticache", "elb", "emr",
    "eni", "es", "firehose", "glue", "iam", "identitystore", "igw", "iot",
    "kinesis", "kms", "lambda", "logs", "media_package", "media_store",
    "medialive", "msk", "nacl", "nat", "opsworks", "organization", "qldb", "rds",
    "redshift", "resourcegroups", "route53", "route_table", "s3",
    "secretsmanager", "securityhub", "servicecatalog", "ses", "sfn", "sg", "sns",
    "sqs", "ssm", "subnet", "swf", "transit_gateway", "vpc", "vpc_peering",
    "vpn_connection", "vpn_gateway", "waf", "waf_regional", "wafv2_cloudfront",
    "wafv2_regional", "workspaces", "xray",
]

# GCP Regions as of April 2024
GCP_REGIONS = [
    "africa-south1", "asia-east1", "asia-east2", "asia-northeast1",
    "asia-northeast2", "asia-northeast3", "asia-south1", "asia-south2",
    "asia-southeast1", "asia-southeast2", "australia-southeast1",
    "australia-southeast2", "europe-central2", "europe-north1",
    "europe-southwest1", "europe-west1", "europe-west10", "europe-west12",
    "europe-west2", "europe-west3", "europe-west4", "europe-west6",
    "europe-west8", "europe-west9", "me-central1", "me-central2", "me-west1",
    "northamerica-northeast1", "northamerica-northeast2", "southamerica-east1",
    "southamerica-west1", "us-central1", "us-east1", "us-east4", "us-east5",
    "us-south1", "us-west1", "us-west2", "us-west3", "us-west4",
]

# Terraformer Azure resource names
AZURE_SERVICES = [
    "analysis", "app_service", "application_gateway", "container", "cosmosdb",
    "data_factory", "database", "databricks", "disk", "dns", "eventhub",
    "keyvault", "load_balancer", "management_lock", "network_interface",
    "network_security_group", "network_watcher", "private_dns",
    "private_endpoint", "public_ip", "purview", "redis", "resource_group",
    "route_table", "scaleset", "security_center_contact",
    "security_center_subscription_pricing", "ssh_public_key", "storage_account",
    "storage_blob", "storage_container", "subnet", "synapse", "virtual_machine",
    "virtual_network",
]

# Cloud Asset Inventory asset types mapped to Terraformer GCP resource names
GCP_ASSET_TYPE_MAPPING = {
    # Compute Engine
    "compute.googleapis.com/Address": "addresses",
    "compute.googleapis.com/GlobalAddress": "globalAddresses",
    "compute.googleapis.com/Autoscaler": "autoscalers",
    "compute.googleapis.com/RegionAutoscaler": "regionAutoscalers",
    "compute.googleapis.com/BackendBucket": "backendBuckets",
    "compute.googleapis.com/BackendService": "backendServices",
    "compute.googleapis.com/RegionBackendService": "regionBackendServices",
    "compute.googleapis.com/Disk": "disks",
    "compute.googleapis.com/RegionDisk": "regionDisks",
    "compute.googleapis.com/Firewall": "firewall",
    "compute.googleapis.com/ForwardingRule": "forwardingRules",
    "compute.googleapis.com/GlobalForwardingRule": "globalForwardingRules",
    "compute.googleapis.com/HealthCheck": "healthChecks",
    "compute.googleapis.com/RegionHealthCheck": "regionHealthChecks",
    "compute.googleapis.com/HttpHealthCheck": "httpHealthChecks",
    "compute.googleapis.com/HttpsHealthCheck": "httpsHealthChecks",
    "compute.googleapis.com/Image": "images",
    "compute.googleapis.com/Instance": "instances",
    "compute.googleapis.com/InstanceGroup": "instanceGroups",
    "compute.googleapis.com/RegionInstanceGroup": "regionInstanceGroups",
    "compute.googleapis.com/InstanceGroupManager": "instanceGroupManagers",
    "compute.googleapis.com/RegionInstanceGroupManager": "regionInstanceGroupManagers",
    "compute.googleapis.com/InstanceTemplate": "instanceTemplates",
    "compute.googleapis.com/Network": "networks",
    "compute.googleapis.com/NetworkEndpointGroup": "networkEndpointGroups",
    "compute.googleapis.com/NodeGroup": "nodeGroups",
    "compute.googleapis.com/NodeTemplate": "nodeTemplates",
    "compute.googleapis.com/PacketMirroring": "packetMirrorings",
    "compute.googleapis.com/Reservation": "reservations",
    "compute.googleapis.com/ResourcePolicy": "resourcePolicies",
    "compute.googleapis.com/Route": "routes",
    "compute.googleapis.com/Router": "routers",
    "compute.googleapis.com/SecurityPolicy": "securityPolicies",
    "compute.googleapis.com/SslCertificate": "sslCertificates",
    "compute.googleapis.com/RegionSslCertificate": "regionSslCertificates",
    "compute.googleapis.com/SslPolicy": "sslPolicies",
    "compute.googleapis.com/Subnetwork": "subnetworks",
    "compute.googleapis.com/TargetHttpProxy": "targetHttpProxies",
    "compute.googleapis.com/RegionTargetHttpProxy": "regionTargetHttpProxies",
    "compute.googleapis.com/TargetHttpsProxy": "targetHttpsProxies",
    "compute.googleapis.com/RegionTargetHttpsProxy": "regionTargetHttpsProxies",
    "compute.googleapis.com/TargetInstance": "targetInstances",
    "compute.googleapis.com/TargetPool": "targetPools",
    "compute.googleapis.com/TargetSslProxy": "targetSslProxies",
    "compute.googleapis.com/TargetTcpProxy": "targetTcpProxies",
    "compute.googleapis.com/TargetVpnGateway": "targetVpnGateways",
    "compute.googleapis.com/UrlMap": "urlMaps",
    "compute.googleapis.com/RegionUrlMap": "regionUrlMaps",
    "compute.googleapis.com/VpnTunnel": "vpnTunnels",
    "compute.googleapis.com/ExternalVpnGateway": "externalVpnGateways",
    "compute.googleapis.com/InterconnectAttachment": "interconnectAttachments",

    "storage.googleapis.com/Bucket": "gcs",
    "bigquery.googleapis.com/Dataset": "bigQuery",
    "bigquery.googleapis.com/Table": "bigQuery",
    "cloudfunctions.googleapis.com/Function": "cloudFunctions",
    "cloudbuild.googleapis.com/Trigger": "cloudbuild",
    "sql.googleapis.com/Instance": "cloudsql",
    "cloudtasks.googleapis.com/Queue": "cloudtasks",
    "dataproc.googleapis.com/Cluster": "dataProc",
    "container.googleapis.com/Cluster": "gke",
    "iam.googleapis.com/ServiceAccount": "iam",
    "iam.googleapis.com/Role": "iam",
    "dns.googleapis.com/ManagedZone": "dns",
    "cloudkms.googleapis.com/KeyRing": "kms",
    "cloudkms.googleapis.com/CryptoKey": "kms",
    "logging.googleapis.com/LogMetric": "logging",
    "logging.googleapis.com/LogSink": "logging",
    "logging.googleapis.com/LogBucket": "logging",
    "redis.googleapis.com/Instance": "memoryStore",
    "monitoring.googleapis.com/AlertPolicy": "monitoring",
    "monitoring.googleapis.com/NotificationChannel": "monitoring",
    "pubsub.googleapis.com/Topic": "pubsub",
    "pubsub.googleapis.com/Subscription": "pubsub",
    "cloudresourcemanager.googleapis.com/Project": "project",
    "cloudscheduler.googleapis.com/Job": "schedulerJobs",
}

REGION_PATTERNS = {
    'aws': re.compile(r'^[a-z]{2}-[a-z]+-\d$'),
    'gcp': re.compile(r'^[a-z]+-[a-z]+\d+$'),
}


@dataclass
class ServiceGroup:
    """A group of importable services with an optional region allow-list"""
    name: str
    services: List[str]
    regions: List[str] = field(default_factory=list)  # empty means every region


def filter_regions(all_regions: Iterable[str], exclude_regions: Iterable[str]) -> List[str]:
    """Remove the excluded regions from a region list, keeping order"""
    excluded = set(exclude_regions)
    return [r for r in all_regions if r not in excluded]


def unique(items: Iterable[str]) -> List[str]:
    """De-duplicate while keeping first-seen order"""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def services_for_region(groups: List[ServiceGroup], region: str) -> List[str]:
    """Services of every group available in the given region"""
    services = []
    for group in groups:
        if not group.regions or region in group.regions:
            services.extend(group.services)
    return unique(services)


AWS_SERVICE_GROUPS = [
    ServiceGroup("Core Infrastructure", [
        "vpc", "subnet", "sg", "nacl", "route_table", "igw", "nat",
        "ec2_instance", "ebs", "eip", "cloudwatch", "cloudtrail",
    ]),
    ServiceGroup("Identity and Security", ["iam", "acm", "kms", "secretsmanager"]),
    ServiceGroup("Compute and Containers",
                 ["auto_scaling", "lambda", "eks", "ecs", "ecr"], AWS_REGIONS),
    ServiceGroup("Storage", ["s3", "efs"], AWS_REGIONS),
    ServiceGroup("Database", ["rds", "dynamodb", "elasticache", "docdb"],
                 filter_regions(AWS_REGIONS, [
                     "ap-northeast-3", "ap-southeast-3", "ap-southeast-4",
                     "ap-south-2", "eu-south-2", "eu-central-2", "ca-west-1",
                 ])),
    ServiceGroup("Network and Content Delivery",
                 ["alb", "elb", "cloudfront", "route53", "api_gateway"], AWS_REGIONS),
    ServiceGroup("Analytics and Messaging", ["sns", "sqs", "kinesis", "msk", "emr"],
                 filter_regions(AWS_REGIONS, [
                     "ap-northeast-3", "ap-southeast-3", "ap-southeast-4",
                     "ap-south-2", "eu-south-2", "ca-west-1",
                 ])),
    ServiceGroup("Management and Governance",
                 ["cloudformation", "config", "organization", "ssm"], AWS_REGIONS),
]


def is_valid_region_format(provider: str, region: str) -> bool:
    """Check a region name against the provider's naming scheme"""
    pattern = REGION_PATTERNS.get(provider)
    if pattern is None:
        return False
    return bool(pattern.match(region))


def valid_regions(provider: str, regions: Iterable[str]) -> List[str]:
    """Drop region names that do not match the provider's naming scheme"""
    valid = []
    for region in regions:
        if is_valid_region_format(provider, region):
            valid.append(region)
        else:
            logger.warning(f"Ignoring malformed {provider} region name: {region!r}")
    return valid


def fetch_aws_regions(creds: Optional[AWSCredentials] = None) -> List[str]:
    """
    Ask EC2 for every region visible to the account

    Args:
        creds: Account credentials; the default boto3 chain is used when None

    Raises:
        ClientError/BotoCoreError from boto3
    """
    if creds:
        session = boto3.Session(
            aws_access_key_id=creds.access_key_id,
            aws_secret_access_key=creds.secret_access_key,
            region_name=creds.region or 'us-east-1'
        )
    else:
        session = boto3.Session(region_name='us-east-1')

    response = session.client('ec2').describe_regions(AllRegions=True)
    return [r['RegionName'] for r in response.get('Regions', [])]


def get_aws_regions(creds: Optional[AWSCredentials] = None) -> List[str]:
    """Dynamic AWS region list, falling back to the hard-coded one"""
    try:
        regions = fetch_aws_regions(creds)
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"Could not fetch AWS regions ({e}); using built-in list")
        return list(AWS_REGIONS)

    regions = valid_regions('aws', regions)
    if not regions:
        logger.warning("EC2 returned no usable regions; using built-in list")
        return list(AWS_REGIONS)

    logger.debug(f"Found {len(regions)} AWS regions")
    return regions


def parse_gcp_regions(output: str) -> List[str]:
    """
    Parse `gcloud compute regions list` table output

    The first line is the header; the region is the first column of each row.
    """
    regions = []
    for line in output.splitlines()[1:]:
        fields = line.split()
        if fields:
            regions.append(fields[0])
    return regions


def convert_asset_type(asset_type: str) -> Optional[str]:
    """Terraformer resource name for a Cloud Asset Inventory type, if supported"""
    return GCP_ASSET_TYPE_MAPPING.get(asset_type)


def parse_gcp_assets(output: str, exclude: Iterable[str] = ()) -> List[str]:
    """
    Map `gcloud asset list --format=json` output to Terraformer resources

    Args:
        output: JSON array of assets with an ``assetType`` key
        exclude: Resource names to leave out

    Returns:
        Sorted, de-duplicated Terraformer resource names

    Raises:
        ValueError: output is not a JSON array
    """
    assets = json.loads(output)
    if not isinstance(assets, list):
        raise ValueError("expected a JSON array of assets")

    excluded = set(exclude)
    resources = set()
    for asset in assets:
        if not isinstance(asset, dict):
            continue
        resource = convert_asset_type(asset.get('assetType', ''))
        if resource and resource not in excluded:
            resources.add(resource)
    return sorted(resources)


def default_resources(provider: str) -> List[str]:
    """Built-in Terraformer resource list for a provider"""
    catalogs: Dict[str, List[str]] = {
        'aws': AWS_SERVICES,
        'azure': AZURE_SERVICES,
    }
    return list(catalogs.get(provider, []))
