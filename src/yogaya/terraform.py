#!/usr/bin/env python3
"""
Terraform and Terraformer Invocation

Renders the provider bootstrap main.tf that `terraform init` needs before
Terraformer can run, and builds the command lines for both binaries.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from jinja2 import Template

from .errors import UnsupportedProviderError
from .runner import CommandRunner, CommandResult

logger = logging.getLogger(__name__)


# Terraformer's own provider names
TERRAFORMER_PROVIDERS = {
    'aws': 'aws',
    'gcp': 'google',
    'azure': 'azure',
}

# Directory Terraformer writes its per-service tree into
TERRAFORMER_OUTPUT_DIRS = {
    'aws': 'aws',
    'gcp': 'google',
    'azure': 'azurerm',
}

MAIN_TF_TEMPLATES = {
    'aws': """
provider "aws" {
  region = "{{ region }}"
}
""",
    'gcp': """
terraform {
  required_providers {
    google-beta = {
      source  = "hashicorp/google"
      version = "{{ provider_version | default('4.0.0') }}"
    }
  }
  required_version = ">= 0.13"
}

provider "google-beta" {
  project = "{{ project }}"
}
""",
    'azure': """
terraform {
  required_providers {
    azurerm = {
      source = "hashicorp/azurerm"
    }
  }
}

provider "azurerm" {
  features {}
{%- if subscription_id %}
  subscription_id = "{{ subscription_id }}"
{%- endif %}
{%- if tenant_id %}
  tenant_id       = "{{ tenant_id }}"
{%- endif %}
}
""",
}


def render_main_tf(provider: str, **attributes) -> str:
    """
    Render the bootstrap main.tf for a provider

    Args:
        provider: aws (region=), gcp (project=) or azure (subscription_id=, tenant_id=)
    """
    if provider not in MAIN_TF_TEMPLATES:
        raise UnsupportedProviderError(provider)
    return Template(MAIN_TF_TEMPLATES[provider]).render(**attributes)


def write_main_tf(directory: Union[str, Path], provider: str, **attributes) -> Path:
    path = Path(directory) / "main.tf"
    with open(path, 'w') as f:
        f.write(render_main_tf(provider, **attributes))
    return path


class TerraformCli:
    """Runs `terraform init` in a working directory"""

    def __init__(self, runner: CommandRunner, binary: str = "terraform",
                 upgrade: bool = True, timeout: Optional[int] = None):
        self.runner = runner
        self.binary = binary
        self.upgrade = upgrade
        self.timeout = timeout

    def init_command(self) -> List[str]:
        cmd = [self.binary, "init", "-input=false"]
        if self.upgrade:
            cmd.append("-upgrade")
        return cmd

    def init(self, directory: Union[str, Path]) -> CommandResult:
        logger.debug(f"Running terraform init in {directory}")
        return self.runner.run(self.init_command(), cwd=directory, timeout=self.timeout)


class TerraformerCli:
    """Builds and runs `terraformer import` invocations"""

    def __init__(self, runner: CommandRunner, binary: str = "terraformer",
                 compact: bool = True, timeout: Optional[int] = None):
        self.runner = runner
        self.binary = binary
        self.compact = compact
        self.timeout = timeout

    def import_command(self, provider: str, resources: List[str],
                       regions: Optional[List[str]] = None,
                       projects: Optional[List[str]] = None,
                       path_output: str = "./",
                       compact: Optional[bool] = None) -> List[str]:
        """
        Build the import command line

        Args:
            provider: yogaya provider name (aws, gcp, azure)
            resources: Terraformer resource names, or ["*"]
            regions: Regions to import
            projects: GCP projects to import
            path_output: Value for --path-output
            compact: Override the instance-wide --compact setting
        """
        compact = self.compact if compact is None else compact
        if provider not in TERRAFORMER_PROVIDERS:
            raise UnsupportedProviderError(provider)

        cmd = [
            self.binary, "import", TERRAFORMER_PROVIDERS[provider],
            f"--resources={','.join(resources)}",
        ]
        if regions:
            cmd.append(f"--regions={','.join(regions)}")
        if projects:
            cmd.append(f"--projects={','.join(projects)}")
        cmd.append(f"--path-output={path_output}")
        if compact:
            cmd.append("--compact")
        return cmd

    def import_resources(self, provider: str, resources: List[str],
                         directory: Union[str, Path],
                         env: Optional[Dict[str, str]] = None,
                         regions: Optional[List[str]] = None,
                         projects: Optional[List[str]] = None,
                         path_output: str = "./",
                         compact: Optional[bool] = None) -> CommandResult:
        cmd = self.import_command(provider, resources, regions=regions,
                                  projects=projects, path_output=path_output,
                                  compact=compact)
        logger.debug(f"Running terraformer import {provider} in {directory}")
        return self.runner.run(cmd, cwd=directory, env=env, timeout=self.timeout)
