"""
yogaya

Onboards AWS, GCP and Azure credentials and generates Terraform configuration
for every stored account and region using Terraformer.
"""

__version__ = "1.0.0"

from .accounts import AccountStore, CloudAccount
from .config import ConfigManager, ToolConfig, GenerateConfig
from .errors import YogayaError, GenerationError
from .orchestrator import ImportOrchestrator, GenerationSummary

__all__ = [
    "AccountStore",
    "CloudAccount",
    "ConfigManager",
    "ToolConfig",
    "GenerateConfig",
    "YogayaError",
    "GenerationError",
    "ImportOrchestrator",
    "GenerationSummary"
]
