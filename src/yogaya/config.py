#!/usr/bin/env python3
"""
Configuration Management Module

This module handles loading, validation, and management of the yogaya tool
configuration (binaries, concurrency, output layout and logging). The cloud
account store itself lives in accounts.py.
"""

import os
import yaml
import json
import logging
import logging.handlers
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, asdict
from pathlib import Path
from jsonschema import validate, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class GenerateConfig:
    """Configuration for the import-and-merge pipeline"""
    output_directory: str = "generated"
    max_workers: int = 5
    terraform_binary: str = "terraform"
    terraformer_binary: str = "terraformer"
    gcloud_binary: str = "gcloud"
    terraform_init_upgrade: bool = True
    compact: bool = True
    command_timeout: Optional[int] = None  # seconds, None waits forever
    backup_existing_output: bool = True
    aws_regions: List[str] = field(default_factory=list)  # empty means discover
    aws_resources: List[str] = field(default_factory=list)  # empty means built-in catalog
    aws_use_service_groups: bool = False
    azure_resources: List[str] = field(default_factory=list)
    gcp_excluded_resources: List[str] = field(default_factory=lambda: ["cloudFunctions"])


@dataclass
class LoggingConfig:
    """Configuration for logging"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    console: bool = True
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5


@dataclass
class ToolConfig:
    """Main configuration class for yogaya"""
    generate: GenerateConfig = field(default_factory=GenerateConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class ConfigManager:
    """Configuration manager for yogaya"""

    # JSON Schema for configuration validation
    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "generate": {
                "type": "object",
                "properties": {
                    "output_directory": {"type": "string", "minLength": 1},
                    "max_workers": {"type": "integer", "minimum": 1, "maximum": 64},
                    "terraform_binary": {"type": "string", "minLength": 1},
                    "terraformer_binary": {"type": "string", "minLength": 1},
                    "gcloud_binary": {"type": "string", "minLength": 1},
                    "terraform_init_upgrade": {"type": "boolean"},
                    "compact": {"type": "boolean"},
                    "command_timeout": {"type": ["integer", "null"], "minimum": 1},
                    "backup_existing_output": {"type": "boolean"},
                    "aws_regions": {"type": "array", "items": {"type": "string"}},
                    "aws_resources": {"type": "array", "items": {"type": "string"}},
                    "aws_use_service_groups": {"type": "boolean"},
                    "azure_resources": {"type": "array", "items": {"type": "string"}},
                    "gcp_excluded_resources": {"type": "array", "items": {"type": "string"}}
                },
                "additionalProperties": False
            },
            "logging": {
                "type": "object",
                "properties": {
                    "level": {
                        "type": "string",
                        "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
                    },
                    "format": {"type": "string"},
                    "file": {"type": ["string", "null"]},
                    "console": {"type": "boolean"},
                    "max_file_size": {"type": "integer", "minimum": 1024},
                    "backup_count": {"type": "integer", "minimum": 1}
                },
                "additionalProperties": False
            }
        }
    }

    DEFAULT_LOCATIONS = [
        './yogaya.yaml',
        './yogaya.yml',
        '~/.yogaya/config.yaml',
    ]

    def __init__(self):
        self.config = ToolConfig()
        self._config_sources = []

    def load_config(self,
                    config_file: Optional[str] = None,
                    cli_args: Optional[Dict[str, Any]] = None,
                    env_vars: bool = True) -> ToolConfig:
        """
        Load configuration from multiple sources with precedence:
        1. CLI arguments (highest priority)
        2. Environment variables
        3. Configuration file
        4. Default values (lowest priority)
        """
        self.config = ToolConfig()
        self._config_sources = ["defaults"]

        if config_file:
            self._load_from_file(config_file)
        else:
            for location in self.DEFAULT_LOCATIONS:
                expanded_path = os.path.expanduser(location)
                if os.path.exists(expanded_path):
                    self._load_from_file(expanded_path)
                    break

        if env_vars:
            self._load_from_env()

        if cli_args:
            self._apply_cli_args(cli_args)

        self._validate_config()

        logger.debug(f"Configuration loaded from sources: {', '.join(self._config_sources)}")
        return self.config

    def _load_from_file(self, config_file: str):
        """Load configuration from YAML or JSON file"""
        config_path = Path(config_file).expanduser()
        if not config_path.exists():
            raise ValueError(f"Configuration file not found: {config_file}")

        with open(config_path, 'r') as f:
            if config_path.suffix.lower() == '.json':
                file_config = json.load(f)
            else:
                file_config = yaml.safe_load(f)

        if file_config:
            if not isinstance(file_config, dict):
                raise ValueError(f"Invalid configuration: {config_file} is not a mapping")
            self._merge_config(file_config)
            self._config_sources.append(f"file:{config_file}")

    def _load_from_env(self):
        """Load configuration from environment variables"""
        env_config = {}

        if os.getenv('YOGAYA_OUTPUT_DIR'):
            env_config.setdefault('generate', {})['output_directory'] = os.getenv('YOGAYA_OUTPUT_DIR')

        if os.getenv('YOGAYA_MAX_WORKERS'):
            try:
                max_workers = int(os.getenv('YOGAYA_MAX_WORKERS'))
            except ValueError:
                raise ValueError("Invalid configuration: YOGAYA_MAX_WORKERS must be an integer")
            env_config.setdefault('generate', {})['max_workers'] = max_workers

        if os.getenv('YOGAYA_TERRAFORM_BINARY'):
            env_config.setdefault('generate', {})['terraform_binary'] = os.getenv('YOGAYA_TERRAFORM_BINARY')

        if os.getenv('YOGAYA_TERRAFORMER_BINARY'):
            env_config.setdefault('generate', {})['terraformer_binary'] = os.getenv('YOGAYA_TERRAFORMER_BINARY')

        if os.getenv('YOGAYA_LOG_LEVEL'):
            env_config.setdefault('logging', {})['level'] = os.getenv('YOGAYA_LOG_LEVEL').upper()

        if os.getenv('YOGAYA_LOG_FILE'):
            env_config.setdefault('logging', {})['file'] = os.getenv('YOGAYA_LOG_FILE')

        if env_config:
            self._merge_config(env_config)
            self._config_sources.append("environment")

    def _apply_cli_args(self, cli_args: Dict[str, Any]):
        """Apply CLI arguments to configuration"""
        cli_config = {}

        if cli_args.get('output_dir'):
            cli_config.setdefault('generate', {})['output_directory'] = cli_args['output_dir']

        if cli_args.get('max_workers'):
            cli_config.setdefault('generate', {})['max_workers'] = cli_args['max_workers']

        if cli_args.get('regions'):
            cli_config.setdefault('generate', {})['aws_regions'] = list(cli_args['regions'])

        if cli_args.get('verbose'):
            cli_config.setdefault('logging', {})['level'] = 'DEBUG'
        elif cli_args.get('quiet'):
            cli_config.setdefault('logging', {})['level'] = 'WARNING'

        if cli_config:
            self._merge_config(cli_config)
            self._config_sources.append("cli_args")

    def _merge_config(self, new_config: Dict[str, Any]):
        """Merge new configuration into existing configuration"""
        def merge_dict(base: Dict, update: Dict):
            for key, value in update.items():
                if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                    merge_dict(base[key], value)
                else:
                    base[key] = value

        config_dict = asdict(self.config)
        merge_dict(config_dict, new_config)

        # Validate before rebuilding the dataclasses
        self._validate_dict(config_dict)
        self.config = self._dict_to_config(config_dict)

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> ToolConfig:
        """Convert dictionary to configuration dataclass"""
        return ToolConfig(
            generate=GenerateConfig(**config_dict.get('generate', {})),
            logging=LoggingConfig(**config_dict.get('logging', {}))
        )

    def _validate_dict(self, config_dict: Dict[str, Any]):
        try:
            validate(instance=config_dict, schema=self.CONFIG_SCHEMA)
        except ValidationError as e:
            raise ValueError(f"Invalid configuration: {e.message}")

    def _validate_config(self):
        """Validate configuration against schema"""
        self._validate_dict(asdict(self.config))

    def save_config(self, output_file: str, format: str = 'yaml'):
        """Save current configuration to file"""
        config_dict = asdict(self.config)

        with open(output_file, 'w') as f:
            if format.lower() == 'yaml':
                yaml.dump(config_dict, f, default_flow_style=False, indent=2)
            elif format.lower() == 'json':
                json.dump(config_dict, f, indent=2)
            else:
                raise ValueError(f"Unsupported format: {format}")

        logger.info(f"Configuration saved to {output_file}")


def setup_logging(config: LoggingConfig):
    """Configure the root logger from a LoggingConfig"""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(config.format)
    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    if config.console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    if config.file:
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.expanduser(config.file),
            maxBytes=config.max_file_size,
            backupCount=config.backup_count
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if not root.handlers:
        root.addHandler(logging.NullHandler())


# Default configuration template
DEFAULT_CONFIG_TEMPLATE = """
# yogaya configuration

generate:
  output_directory: generated
  max_workers: 5            # regions imported concurrently per account
  terraform_binary: terraform
  terraformer_binary: terraformer
  gcloud_binary: gcloud
  terraform_init_upgrade: true
  compact: true             # pass --compact to terraformer (aws, azure)
  command_timeout: null     # seconds per external command, null for none
  backup_existing_output: true
  aws_regions: []           # empty: ask EC2, falling back to the built-in list
  aws_resources: []         # empty: built-in Terraformer resource list
  aws_use_service_groups: false
  azure_resources: []
  gcp_excluded_resources:   # Terraformer GCP resources never imported
    - cloudFunctions

logging:
  level: INFO  # DEBUG, INFO, WARNING, ERROR, CRITICAL
  format: "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
  file: null  # Log file path (null for no file logging)
  console: true
  max_file_size: 10485760  # 10MB
  backup_count: 5
"""
