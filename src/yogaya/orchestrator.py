#!/usr/bin/env python3
"""
Import Orchestrator

This module drives Terraformer for every stored cloud account. AWS and GCP
accounts are imported one region per worker with a bounded pool; Azure is
imported subscription-wide. Each region's output is merged into a single
all_resources_in_<region>.tf file.
"""

import os
import re
import json
import tempfile
import threading
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Iterable

from .accounts import CloudAccount
from .catalog import (
    get_aws_regions, parse_gcp_regions, parse_gcp_assets, default_resources,
    services_for_region, valid_regions, AWS_SERVICE_GROUPS, GCP_REGIONS,
)
from .config import GenerateConfig
from .credentials import gcp_key_document
from .errors import YogayaError, CommandError, GenerationError
from .merger import (
    merge_files, merged_file_name, remove_work_dir, cleanup_terraform_artifacts,
    rename_dir_with_backup,
)
from .runner import CommandRunner
from .terraform import TerraformCli, TerraformerCli, TERRAFORMER_OUTPUT_DIRS, write_main_tf

logger = logging.getLogger(__name__)

PROVIDER_LABELS = {
    'aws': 'AWS',
    'gcp': 'GCP',
    'azure': 'Azure',
}


@dataclass
class RegionResult:
    """Outcome of importing one region"""
    region: str
    success: bool
    merged_file: Optional[Path] = None
    error: Optional[str] = None


@dataclass
class AccountResult:
    """Outcome of importing one account"""
    account_id: str
    provider: str
    status: str  # succeeded, failed or skipped
    output_directory: Optional[Path] = None
    regions: List[RegionResult] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class GenerationSummary:
    """Per-account results of a generate run"""
    results: List[AccountResult] = field(default_factory=list)

    def _with_status(self, status: str) -> List[AccountResult]:
        return [r for r in self.results if r.status == status]

    @property
    def succeeded(self) -> List[AccountResult]:
        return self._with_status('succeeded')

    @property
    def failed(self) -> List[AccountResult]:
        return self._with_status('failed')

    @property
    def skipped(self) -> List[AccountResult]:
        return self._with_status('skipped')


def sanitize_name(name: str) -> str:
    """Make an account name safe for use in a file name"""
    cleaned = re.sub(r'[^A-Za-z0-9._-]+', '-', name).strip('-')
    return cleaned or "default"


class ImportOrchestrator:
    """
    Runs Terraformer imports for a list of accounts

    Region workers share nothing except the progress counter, which is
    guarded by a lock.
    """

    def __init__(self, config: GenerateConfig,
                 runner: Optional[CommandRunner] = None,
                 aws_region_lister: Optional[Callable] = None):
        """
        Initialize the orchestrator

        Args:
            config: Generate settings (output directory, workers, binaries)
            runner: Command runner shared by every external invocation
            aws_region_lister: Callable returning AWS regions for credentials
        """
        self.config = config
        self.runner = runner or CommandRunner(default_timeout=config.command_timeout)
        self.aws_region_lister = aws_region_lister or get_aws_regions

        self.terraform = TerraformCli(
            self.runner,
            binary=config.terraform_binary,
            upgrade=config.terraform_init_upgrade,
            timeout=config.command_timeout
        )
        self.terraformer = TerraformerCli(
            self.runner,
            binary=config.terraformer_binary,
            compact=config.compact,
            timeout=config.command_timeout
        )

        self._handlers: Dict[str, Callable[[CloudAccount], AccountResult]] = {
            'aws': self.run_aws,
            'gcp': self.run_gcp,
            'azure': self.run_azure,
        }
        self._progress_lock = threading.Lock()

    def generate(self, accounts: List[CloudAccount],
                 providers: Optional[Iterable[str]] = None,
                 account_ids: Optional[Iterable[str]] = None) -> GenerationSummary:
        """
        Import every account in turn

        Args:
            accounts: Stored accounts
            providers: Only process these providers (all when empty)
            account_ids: Only process these account IDs (all when empty)

        Returns:
            GenerationSummary; a failing account never stops the others
        """
        providers = set(providers or [])
        account_ids = set(account_ids or [])
        selected = [
            a for a in accounts
            if (not providers or a.provider in providers)
            and (not account_ids or a.id in account_ids)
        ]

        summary = GenerationSummary()
        logger.info(f"Starting generation for {len(selected)} account(s)")

        for index, account in enumerate(selected, 1):
            logger.info(f"Processing account {index}/{len(selected)}: {account.id} ({account.provider})")

            handler = self._handlers.get(account.provider)
            if handler is None:
                logger.warning(f"Unsupported provider {account.provider} for account {account.id}, skipping")
                summary.results.append(AccountResult(account.id, account.provider, 'skipped',
                                                     error="unsupported provider"))
                continue

            try:
                result = handler(account)
            except YogayaError as e:
                logger.error(f"Failed to generate Terraform files for account {account.id}: {e}")
                result = AccountResult(account.id, account.provider, 'failed',
                                       output_directory=self.output_root(account), error=str(e))
            except Exception as e:
                logger.exception(f"Unexpected error generating Terraform files for account {account.id}")
                result = AccountResult(account.id, account.provider, 'failed',
                                       output_directory=self.output_root(account), error=str(e))

            summary.results.append(result)
            if result.status == 'succeeded':
                logger.info(f"Completed account {account.id} -> {result.output_directory}")

        logger.info(
            f"Generation process completed: {len(summary.succeeded)} succeeded, "
            f"{len(summary.failed)} failed, {len(summary.skipped)} skipped"
        )
        return summary

    def output_root(self, account: CloudAccount) -> Path:
        return Path(self.config.output_directory) / f"{account.provider}-{account.id}"

    def _prepare_output_root(self, account: CloudAccount) -> Path:
        """Create a fresh output root, backing up a previous run's output"""
        root = self.output_root(account)
        try:
            if self.config.backup_existing_output:
                rename_dir_with_backup(root)
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise GenerationError(PROVIDER_LABELS[account.provider], account.id,
                                  [f"failed to prepare output directory {root}: {e}"])
        return root

    def _fan_out(self, account: CloudAccount, regions: List[str],
                 worker: Callable[[str], RegionResult]) -> List[RegionResult]:
        """
        Run worker for every region with at most max_workers in flight

        Raises:
            GenerationError: One or more regions failed
        """
        label = PROVIDER_LABELS[account.provider]
        total = len(regions)
        completed = 0
        results: List[RegionResult] = []

        if not regions:
            logger.warning(f"No regions to import for account {account.id}")
            return results

        workers = max(1, min(self.config.max_workers, total))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(worker, region): region for region in regions}

            for future in as_completed(futures):
                region = futures[future]
                try:
                    result = future.result()
                except (YogayaError, OSError) as e:
                    result = RegionResult(region, False, error=f"region {region}: {e}")
                except Exception as e:
                    logger.debug(f"Unexpected error in region {region}", exc_info=True)
                    result = RegionResult(region, False,
                                          error=f"region {region}: {type(e).__name__}: {e}")

                with self._progress_lock:
                    completed += 1
                    results.append(result)
                    if result.success:
                        logger.info(f"Completed {label} region {region} ({completed}/{total})")
                    else:
                        logger.error(f"Failed {label} region {region} ({completed}/{total}): {result.error}")

        failures = [r.error for r in results if not r.success]
        if failures:
            raise GenerationError(label, account.id, failures)
        return results

    def _init_terraform(self, directory: Path, scope: str):
        result = self.terraform.init(directory)
        if not result.ok:
            raise CommandError(f"terraform init failed for {scope}", result.output)

    def _aws_resources(self, region: str) -> List[str]:
        """Resources to import in a region"""
        if self.config.aws_resources:
            return list(self.config.aws_resources)
        if self.config.aws_use_service_groups:
            return services_for_region(AWS_SERVICE_GROUPS, region)
        return default_resources('aws')

    def run_aws(self, account: CloudAccount) -> AccountResult:
        """
        Import every region of an AWS account

        Returns:
            AccountResult with one RegionResult per region
        """
        creds = account.credentials
        root = self._prepare_output_root(account)
        regions = list(self.config.aws_regions) or self.aws_region_lister(creds)
        env = {
            'AWS_ACCESS_KEY_ID': creds.access_key_id,
            'AWS_SECRET_ACCESS_KEY': creds.secret_access_key,
        }
        work_dir_name = TERRAFORMER_OUTPUT_DIRS['aws']

        logger.info(f"Importing AWS account {account.id} across {len(regions)} region(s)")

        def import_region(region: str) -> RegionResult:
            region_dir = root / region
            region_dir.mkdir(parents=True, exist_ok=True)
            write_main_tf(region_dir, 'aws', region=region)
            self._init_terraform(region_dir, f"region {region}")

            resources = self._aws_resources(region)
            if not resources:
                logger.warning(f"No AWS resources selected for region {region}")
                cleanup_terraform_artifacts(region_dir)
                return RegionResult(region, True)

            result = self.terraformer.import_resources(
                'aws', resources, region_dir, env=env, regions=[region], path_output="./"
            )
            if not result.ok:
                raise CommandError(f"error running Terraformer for region {region}", result.output)

            merged = merge_files(region_dir, merged_file_name(region),
                                 source_dir=region_dir / work_dir_name)
            remove_work_dir(region_dir, work_dir_name)
            cleanup_terraform_artifacts(region_dir)
            return RegionResult(region, True, merged_file=merged)

        region_results = self._fan_out(account, regions, import_region)
        return AccountResult(account.id, 'aws', 'succeeded', output_directory=root,
                             regions=region_results)

    def run_gcp(self, account: CloudAccount) -> AccountResult:
        """
        Import every region of a GCP project

        The service-account key is written to a private temporary file for the
        duration of the run so gcloud and Terraformer can pick it up.
        """
        creds = account.credentials
        project = creds.project_id
        root = self._prepare_output_root(account)
        work_dir_name = TERRAFORMER_OUTPUT_DIRS['gcp']

        fd, key_path = tempfile.mkstemp(prefix="yogaya-gcp-", suffix=".json")
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(gcp_key_document(creds), f)
            os.chmod(key_path, 0o600)

            env = {
                'GOOGLE_APPLICATION_CREDENTIALS': key_path,
                'GOOGLE_CLOUD_PROJECT': project,
                'CLOUDSDK_CORE_PROJECT': project,
            }

            try:
                write_main_tf(root, 'gcp', project=project)
                self._init_terraform(root, f"project {project}")
                regions = self._list_gcp_regions(root, env)
                resources = self._list_gcp_resources(root, env, project)
            except (CommandError, OSError) as e:
                raise GenerationError('GCP', account.id, [str(e)])

            if not resources:
                logger.warning(f"No supported GCP resources found in project {project}")
                cleanup_terraform_artifacts(root)
                return AccountResult(account.id, 'gcp', 'succeeded', output_directory=root)

            logger.info(f"Importing GCP project {project}: {len(resources)} resource type(s), "
                        f"{len(regions)} region(s)")

            def import_region(region: str) -> RegionResult:
                region_dir = root / region
                region_dir.mkdir(parents=True, exist_ok=True)
                result = self.terraformer.import_resources(
                    'gcp', resources, root, env=env, regions=[region],
                    projects=[project], path_output=f"./{region}", compact=False
                )
                if not result.ok:
                    raise CommandError(f"error running Terraformer for region {region}", result.output)

                merged = merge_files(region_dir, merged_file_name(region))
                remove_work_dir(region_dir, work_dir_name)
                return RegionResult(region, True, merged_file=merged)

            region_results = self._fan_out(account, regions, import_region)
            cleanup_terraform_artifacts(root)
        finally:
            try:
                os.remove(key_path)
            except OSError as e:
                logger.warning(f"Could not remove temporary credentials file {key_path}: {e}")

        return AccountResult(account.id, 'gcp', 'succeeded', output_directory=root,
                             regions=region_results)

    def _list_gcp_regions(self, root: Path, env: Dict[str, str]) -> List[str]:
        result = self.runner.run(
            [self.config.gcloud_binary, 'compute', 'regions', 'list'],
            cwd=root, env=env, timeout=self.config.command_timeout
        )
        if not result.ok:
            raise CommandError("failed to list GCP regions", result.output)

        regions = valid_regions('gcp', parse_gcp_regions(result.output))
        if not regions:
            logger.warning("gcloud returned no regions; using built-in list")
            return list(GCP_REGIONS)
        return regions

    def _list_gcp_resources(self, root: Path, env: Dict[str, str], project: str) -> List[str]:
        result = self.runner.run(
            [self.config.gcloud_binary, 'asset', 'list', f'--project={project}', '--format=json'],
            cwd=root, env=env, timeout=self.config.command_timeout
        )
        if not result.ok:
            raise CommandError(f"failed to list assets in project {project}", result.output)

        try:
            return parse_gcp_assets(result.output, exclude=self.config.gcp_excluded_resources)
        except ValueError as e:
            raise CommandError(f"failed to parse asset list for project {project}: {e}")

    def run_azure(self, account: CloudAccount) -> AccountResult:
        """Import an Azure subscription into a single merged file"""
        creds = account.credentials
        root = self._prepare_output_root(account)
        work_dir_name = TERRAFORMER_OUTPUT_DIRS['azure']
        resources = list(self.config.azure_resources) or default_resources('azure')
        env = {
            'ARM_SUBSCRIPTION_ID': creds.subscription_id,
            'ARM_TENANT_ID': creds.tenant_id,
        }
        output_name = merged_file_name(f"azure-{sanitize_name(creds.name or account.id)}")

        logger.info(f"Importing Azure subscription {creds.subscription_id}")

        try:
            write_main_tf(root, 'azure', subscription_id=creds.subscription_id,
                          tenant_id=creds.tenant_id)
            self._init_terraform(root, f"subscription {creds.subscription_id}")

            result = self.terraformer.import_resources('azure', resources, root, env=env,
                                                       path_output="./")
            if not result.ok:
                raise CommandError(
                    f"error running Terraformer for subscription {creds.subscription_id}",
                    result.output
                )

            merged = merge_files(root, output_name, source_dir=root / work_dir_name)
            remove_work_dir(root, work_dir_name)
            cleanup_terraform_artifacts(root)
        except (CommandError, OSError) as e:
            raise GenerationError('Azure', account.id, [str(e)])

        return AccountResult(account.id, 'azure', 'succeeded', output_directory=root,
                             regions=[RegionResult(creds.subscription_id, True, merged_file=merged)])
