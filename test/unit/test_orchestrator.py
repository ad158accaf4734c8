#!/usr/bin/env python3
"""
Unit tests for the import orchestrator
"""

import unittest
import sys
import os
import stat
import json
import time
import threading
import tempfile
import shutil
from pathlib import Path
from unittest.mock import Mock, patch

# Add src and fixtures directories to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../fixtures'))

from yogaya.accounts import CloudAccount, AWSCredentials, GCPCredentials, AzureCredentials
from yogaya.catalog import GCP_REGIONS
from yogaya.config import GenerateConfig
from yogaya.errors import GenerationError
from yogaya.orchestrator import ImportOrchestrator, sanitize_name
from yogaya.runner import CommandResult
from sample_credentials import (
    FakeRunner, terraformer_writer, GCLOUD_REGIONS_OUTPUT, GCLOUD_ASSET_LIST_OUTPUT,
)


class OrchestratorTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = GenerateConfig(output_directory=self.temp_dir, max_workers=2)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)


class TestAWSImport(OrchestratorTestCase):
    """Test the per-region AWS pipeline"""

    def setUp(self):
        super().setUp()
        self.config.aws_regions = ['us-east-1', 'eu-west-1', 'ap-south-1']
        self.account = CloudAccount('aws', AWSCredentials('AKIA1', 'secret', 'us-east-1'), id='a1b2c3d4e5f6')
        self.runner = FakeRunner({('terraformer', 'import', 'aws'): terraformer_writer('aws')})

    def run_aws(self, runner=None, **kwargs):
        orchestrator = ImportOrchestrator(self.config, runner=runner or self.runner, **kwargs)
        return orchestrator.run_aws(self.account)

    def test_every_region_is_merged_and_cleaned(self):
        result = self.run_aws()
        root = Path(self.temp_dir) / 'aws-a1b2c3d4e5f6'

        self.assertEqual(result.status, 'succeeded')
        self.assertEqual(result.output_directory, root)
        self.assertEqual(sorted(r.region for r in result.regions), sorted(self.config.aws_regions))

        for region in self.config.aws_regions:
            region_dir = root / region
            self.assertEqual([p.name for p in region_dir.iterdir()], [f'all_resources_in_{region}.tf'])
            content = (region_dir / f'all_resources_in_{region}.tf').read_text()
            self.assertIn(f'resource "vpc" "{region}"', content)
            self.assertIn('# Start of vpc/vpc.tf', content)

    def test_commands_per_region(self):
        self.run_aws()
        root = Path(self.temp_dir) / 'aws-a1b2c3d4e5f6'

        inits = self.runner.calls_for('terraform', 'init')
        self.assertEqual(sorted(c.cwd for c in inits),
                         sorted(root / r for r in self.config.aws_regions))

        imports = self.runner.calls_for('terraformer', 'import', 'aws')
        self.assertEqual(len(imports), 3)
        for call in imports:
            region = call.cwd.name
            self.assertIn(f'--regions={region}', call.args)
            self.assertIn('--path-output=./', call.args)
            self.assertIn('--compact', call.args)
            self.assertEqual(call.env, {'AWS_ACCESS_KEY_ID': 'AKIA1', 'AWS_SECRET_ACCESS_KEY': 'secret'})

    def test_configured_resources(self):
        self.config.aws_resources = ['vpc', 'sg']
        self.run_aws()

        for call in self.runner.calls_for('terraformer'):
            self.assertIn('--resources=vpc,sg', call.args)

    def test_service_groups_per_region(self):
        self.config.aws_regions = ['ap-southeast-4']
        self.config.aws_use_service_groups = True
        self.run_aws()

        resources = [a for a in self.runner.calls_for('terraformer')[0].args if a.startswith('--resources=')][0]
        self.assertIn('vpc', resources)
        self.assertNotIn('rds', resources)

    def test_discovers_regions_when_none_configured(self):
        self.config.aws_regions = []
        lister = Mock(return_value=['us-west-2'])

        result = self.run_aws(aws_region_lister=lister)

        lister.assert_called_once_with(self.account.credentials)
        self.assertEqual([r.region for r in result.regions], ['us-west-2'])

    def test_failed_region_is_reported_and_others_finish(self):
        runner = FakeRunner({
            ('terraformer', 'import', 'aws'): terraformer_writer('aws', fail_regions=('eu-west-1',))
        })

        with self.assertRaises(GenerationError) as ctx:
            self.run_aws(runner=runner)

        error = ctx.exception
        self.assertEqual(len(error.failures), 1)
        self.assertIn('eu-west-1', error.failures[0])
        self.assertIn('access denied in eu-west-1', error.failures[0])
        self.assertTrue(str(error).startswith(
            'encountered errors during AWS Terraformer process for account a1b2c3d4e5f6'))

        root = Path(self.temp_dir) / 'aws-a1b2c3d4e5f6'
        self.assertTrue((root / 'us-east-1' / 'all_resources_in_us-east-1.tf').exists())
        self.assertTrue((root / 'ap-south-1' / 'all_resources_in_ap-south-1.tf').exists())
        # Failed region keeps its partial state
        self.assertTrue((root / 'eu-west-1' / 'main.tf').exists())

    def test_all_failures_are_collected(self):
        runner = FakeRunner({('terraform', 'init'): (1, 'Failed to query available provider packages')})

        with self.assertRaises(GenerationError) as ctx:
            self.run_aws(runner=runner)

        self.assertEqual(len(ctx.exception.failures), 3)
        self.assertIn('Failed to query available provider packages', ctx.exception.failures[0])
        self.assertEqual(runner.calls_for('terraformer'), [])

    def test_previous_output_is_backed_up(self):
        root = Path(self.temp_dir) / 'aws-a1b2c3d4e5f6'
        root.mkdir()
        (root / 'stale.tf').write_text('old')

        self.run_aws()

        backups = [p for p in Path(self.temp_dir).iterdir() if '.backup-' in p.name]
        self.assertEqual(len(backups), 1)
        self.assertEqual((backups[0] / 'stale.tf').read_text(), 'old')
        self.assertFalse((root / 'stale.tf').exists())

    def test_backup_disabled(self):
        self.config.backup_existing_output = False
        root = Path(self.temp_dir) / 'aws-a1b2c3d4e5f6'
        root.mkdir()
        (root / 'keep.tf').write_text('old')

        self.run_aws()

        self.assertTrue((root / 'keep.tf').exists())

    def test_concurrency_is_bounded(self):
        self.config.aws_regions = ['us-east-1', 'us-east-2', 'us-west-1', 'us-west-2', 'eu-west-1']
        writer = terraformer_writer('aws')
        lock = threading.Lock()
        state = {'active': 0, 'peak': 0}

        def slow_import(args, cwd, env):
            with lock:
                state['active'] += 1
                state['peak'] = max(state['peak'], state['active'])
            time.sleep(0.05)
            with lock:
                state['active'] -= 1
            return writer(args, cwd, env)

        runner = FakeRunner({('terraformer', 'import', 'aws'): slow_import})
        self.run_aws(runner=runner)

        self.assertLessEqual(state['peak'], 2)
        self.assertEqual(len(runner.calls_for('terraformer')), 5)


class TestGCPImport(OrchestratorTestCase):
    """Test the GCP project pipeline"""

    def setUp(self):
        super().setUp()
        self.account = CloudAccount('gcp', GCPCredentials(
            'demo-project-123', 'kid', 'PRIVATE', 'sa@demo-project-123.iam.gserviceaccount.com', '42'
        ), id='0123456789ab')
        self.key_snapshots = []

        def regions_list(args, cwd, env):
            key_path = env['GOOGLE_APPLICATION_CREDENTIALS']
            self.key_snapshots.append({
                'path': key_path,
                'mode': stat.S_IMODE(os.stat(key_path).st_mode),
                'content': json.loads(Path(key_path).read_text()),
            })
            return CommandResult(' '.join(args), 0, GCLOUD_REGIONS_OUTPUT)

        self.responses = {
            ('gcloud', 'compute', 'regions', 'list'): regions_list,
            ('gcloud', 'asset', 'list'): (0, GCLOUD_ASSET_LIST_OUTPUT),
            ('terraformer', 'import', 'google'): terraformer_writer('google'),
        }
        self.root = Path(self.temp_dir) / 'gcp-0123456789ab'

    def run_gcp(self, responses=None):
        self.runner = FakeRunner(responses or self.responses)
        return ImportOrchestrator(self.config, runner=self.runner).run_gcp(self.account)

    def test_regions_are_merged(self):
        result = self.run_gcp()

        self.assertEqual(sorted(r.region for r in result.regions), ['europe-west1', 'us-central1'])
        for region in ('europe-west1', 'us-central1'):
            self.assertEqual([p.name for p in (self.root / region).iterdir()],
                             [f'all_resources_in_{region}.tf'])
        self.assertFalse((self.root / 'main.tf').exists())

    def test_init_runs_once_in_root(self):
        self.run_gcp()

        inits = self.runner.calls_for('terraform', 'init')
        self.assertEqual(len(inits), 1)
        self.assertEqual(inits[0].cwd, self.root)

    def test_import_command(self):
        self.run_gcp()

        for call in self.runner.calls_for('terraformer'):
            region = [a for a in call.args if a.startswith('--regions=')][0].split('=')[1]
            self.assertEqual(call.cwd, self.root)
            self.assertIn('--resources=gcs,instances,networks', call.args)
            self.assertIn('--projects=demo-project-123', call.args)
            self.assertIn(f'--path-output=./{region}', call.args)
            self.assertNotIn('--compact', call.args)
            self.assertEqual(call.env['GOOGLE_CLOUD_PROJECT'], 'demo-project-123')
            self.assertEqual(call.env['CLOUDSDK_CORE_PROJECT'], 'demo-project-123')

    def test_asset_list_command(self):
        self.run_gcp()
        call, = self.runner.calls_for('gcloud', 'asset', 'list')
        self.assertEqual(call.args, ['gcloud', 'asset', 'list', '--project=demo-project-123', '--format=json'])

    def test_key_file_is_private_and_removed(self):
        self.run_gcp()

        snapshot, = self.key_snapshots
        self.assertEqual(snapshot['mode'], 0o600)
        self.assertEqual(snapshot['content']['client_email'], 'sa@demo-project-123.iam.gserviceaccount.com')
        self.assertEqual(snapshot['content']['private_key'], 'PRIVATE')
        self.assertFalse(os.path.exists(snapshot['path']))

    def test_region_listing_failure(self):
        responses = dict(self.responses)
        responses[('gcloud', 'compute', 'regions', 'list')] = (1, 'PERMISSION_DENIED')

        with self.assertRaises(GenerationError) as ctx:
            self.run_gcp(responses)

        self.assertIn('PERMISSION_DENIED', str(ctx.exception))
        key_path = self.runner.calls_for('gcloud')[0].env['GOOGLE_APPLICATION_CREDENTIALS']
        self.assertFalse(os.path.exists(key_path))

    def test_unparseable_asset_list(self):
        responses = dict(self.responses)
        responses[('gcloud', 'asset', 'list')] = (0, '{"unexpected": true}')

        with self.assertRaises(GenerationError):
            self.run_gcp(responses)

    def test_no_supported_assets(self):
        responses = dict(self.responses)
        responses[('gcloud', 'asset', 'list')] = (0, '[]')

        result = self.run_gcp(responses)

        self.assertEqual(result.status, 'succeeded')
        self.assertEqual(result.regions, [])
        self.assertEqual(self.runner.calls_for('terraformer'), [])

    def test_excluded_resources(self):
        self.config.gcp_excluded_resources = ['gcs']
        self.run_gcp()

        for call in self.runner.calls_for('terraformer'):
            self.assertIn('--resources=instances,networks', call.args)

    def test_cloud_functions_excluded_by_default(self):
        assets = json.loads(GCLOUD_ASSET_LIST_OUTPUT) + [
            {"name": "//cloudfunctions.googleapis.com/projects/demo/functions/f",
             "assetType": "cloudfunctions.googleapis.com/Function"},
        ]
        responses = dict(self.responses)
        responses[('gcloud', 'asset', 'list')] = (0, json.dumps(assets))

        self.run_gcp(responses)

        for call in self.runner.calls_for('terraformer'):
            self.assertIn('--resources=gcs,instances,networks', call.args)

    def test_malformed_regions_are_dropped(self):
        responses = dict(self.responses)
        responses[('gcloud', 'compute', 'regions', 'list')] = (
            0, "NAME  CPUS\nus-central1  2/24\nWARNING:  something\n")

        result = self.run_gcp(responses)

        self.assertEqual([r.region for r in result.regions], ['us-central1'])

    def test_built_in_regions_when_gcloud_lists_none(self):
        self.config.max_workers = 8
        responses = dict(self.responses)
        responses[('gcloud', 'compute', 'regions', 'list')] = (0, "Listed 0 items.\n")

        result = self.run_gcp(responses)

        self.assertEqual(sorted(r.region for r in result.regions), sorted(GCP_REGIONS))
        self.assertEqual(len(self.runner.calls_for('terraformer')), len(GCP_REGIONS))

    def test_region_failure(self):
        responses = dict(self.responses)
        responses[('terraformer', 'import', 'google')] = terraformer_writer(
            'google', fail_regions=('us-central1',))

        with self.assertRaises(GenerationError) as ctx:
            self.run_gcp(responses)

        self.assertIn('GCP', str(ctx.exception))
        self.assertEqual(len(ctx.exception.failures), 1)


class TestAzureImport(OrchestratorTestCase):
    """Test the subscription-wide Azure pipeline"""

    def setUp(self):
        super().setUp()
        self.account = CloudAccount('azure', AzureCredentials(
            'sub-1', 'tenant-1', 'Pay As You Go', 'AzureCloud'), id='fedcba987654')
        self.root = Path(self.temp_dir) / 'azure-fedcba987654'

    def test_single_merged_file(self):
        runner = FakeRunner({
            ('terraformer', 'import', 'azure'): terraformer_writer('azurerm', services=('resource_group',))
        })

        result = ImportOrchestrator(self.config, runner=runner).run_azure(self.account)

        merged = self.root / 'all_resources_in_azure-Pay-As-You-Go.tf'
        self.assertEqual(result.regions[0].merged_file, merged)
        self.assertIn('resource "resource_group" "global"', merged.read_text())
        self.assertEqual([p.name for p in self.root.iterdir()], [merged.name])

        call, = runner.calls_for('terraformer')
        self.assertEqual(call.env, {'ARM_SUBSCRIPTION_ID': 'sub-1', 'ARM_TENANT_ID': 'tenant-1'})
        self.assertIn('--compact', call.args)
        self.assertNotIn('--regions', ' '.join(call.args))

    def test_import_failure(self):
        runner = FakeRunner({('terraformer',): (1, 'authorization failed')})

        with self.assertRaises(GenerationError) as ctx:
            ImportOrchestrator(self.config, runner=runner).run_azure(self.account)

        self.assertIn('Azure', str(ctx.exception))
        self.assertIn('authorization failed', str(ctx.exception))

    def test_sanitize_name(self):
        self.assertEqual(sanitize_name('Pay As You Go'), 'Pay-As-You-Go')
        self.assertEqual(sanitize_name('prod/eu (main)'), 'prod-eu-main')
        self.assertEqual(sanitize_name('***'), 'default')


class TestGenerate(OrchestratorTestCase):
    """Test sequential account processing"""

    def setUp(self):
        super().setUp()
        self.config.aws_regions = ['us-east-1']
        self.aws = CloudAccount('aws', AWSCredentials('AKIA1', 'secret'), id='aaaaaaaaaaaa')
        self.azure = CloudAccount('azure', AzureCredentials('sub', 'tenant', 'Prod'), id='bbbbbbbbbbbb')
        self.unknown = CloudAccount('oracle', AWSCredentials('x', 'y'), id='cccccccccccc')
        self.runner = FakeRunner({
            ('terraformer', 'import', 'aws'): terraformer_writer('aws'),
            ('terraformer', 'import', 'azure'): (1, 'subscription not found'),
        })
        self.orchestrator = ImportOrchestrator(self.config, runner=self.runner)

    def test_failures_do_not_stop_other_accounts(self):
        summary = self.orchestrator.generate([self.azure, self.unknown, self.aws])

        self.assertEqual([r.account_id for r in summary.succeeded], ['aaaaaaaaaaaa'])
        self.assertEqual([r.account_id for r in summary.failed], ['bbbbbbbbbbbb'])
        self.assertEqual([r.account_id for r in summary.skipped], ['cccccccccccc'])
        self.assertIn('subscription not found', summary.failed[0].error)

    def test_provider_filter(self):
        summary = self.orchestrator.generate([self.azure, self.aws], providers=['aws'])

        self.assertEqual([r.account_id for r in summary.results], ['aaaaaaaaaaaa'])
        self.assertEqual(self.runner.calls_for('terraformer', 'import', 'azure'), [])

    def test_account_filter(self):
        summary = self.orchestrator.generate([self.azure, self.aws], account_ids=['bbbbbbbbbbbb'])
        self.assertEqual([r.account_id for r in summary.results], ['bbbbbbbbbbbb'])

    def test_non_utf8_output_does_not_stop_run(self):
        def latin_import(args, cwd, env):
            vpc_dir = Path(cwd) / 'aws' / 'vpc'
            vpc_dir.mkdir(parents=True)
            (vpc_dir / 'vpc.tf').write_bytes(b'resource "aws_vpc" "caf\xe9" {}\n')
            return CommandResult(' '.join(args), 0, 'imported')

        runner = FakeRunner({('terraformer', 'import', 'aws'): latin_import})
        other = CloudAccount('aws', AWSCredentials('AKIA2', 'secret'), id='dddddddddddd')

        summary = ImportOrchestrator(self.config, runner=runner).generate([self.aws, other])

        self.assertEqual([r.account_id for r in summary.succeeded], ['aaaaaaaaaaaa', 'dddddddddddd'])
        merged = summary.succeeded[0].regions[0].merged_file.read_text(encoding='utf-8')
        self.assertIn('caf\ufffd', merged)

    def test_unexpected_region_error_is_collected(self):
        writer = terraformer_writer('aws')

        def flaky_import(args, cwd, env):
            if env['AWS_ACCESS_KEY_ID'] == 'AKIA1':
                raise RuntimeError('terraformer output could not be parsed')
            return writer(args, cwd, env)

        runner = FakeRunner({('terraformer', 'import', 'aws'): flaky_import})
        other = CloudAccount('aws', AWSCredentials('AKIA2', 'secret'), id='dddddddddddd')

        summary = ImportOrchestrator(self.config, runner=runner).generate([self.aws, other])

        self.assertEqual([r.account_id for r in summary.failed], ['aaaaaaaaaaaa'])
        self.assertEqual([r.account_id for r in summary.succeeded], ['dddddddddddd'])
        self.assertIn('RuntimeError: terraformer output could not be parsed', summary.failed[0].error)

    def test_unexpected_account_error_is_recorded(self):
        self.config.aws_regions = []
        lister = Mock(side_effect=RuntimeError('region lookup exploded'))
        orchestrator = ImportOrchestrator(self.config, runner=self.runner, aws_region_lister=lister)

        summary = orchestrator.generate([self.aws, self.azure])

        self.assertEqual([r.account_id for r in summary.failed], ['aaaaaaaaaaaa', 'bbbbbbbbbbbb'])
        self.assertIn('region lookup exploded', summary.failed[0].error)
        self.assertEqual(len(self.runner.calls_for('terraformer', 'import', 'azure')), 1)

    def test_backup_failure_only_fails_that_account(self):
        other = CloudAccount('aws', AWSCredentials('AKIA2', 'secret'), id='dddddddddddd')

        with patch('yogaya.orchestrator.rename_dir_with_backup',
                   side_effect=[PermissionError('output directory is busy'), None]):
            summary = self.orchestrator.generate([self.aws, other])

        self.assertEqual([r.account_id for r in summary.failed], ['aaaaaaaaaaaa'])
        self.assertEqual([r.account_id for r in summary.succeeded], ['dddddddddddd'])
        self.assertIn('output directory is busy', summary.failed[0].error)

    def test_no_accounts(self):
        summary = self.orchestrator.generate([])
        self.assertEqual(summary.results, [])


if __name__ == '__main__':
    unittest.main()
