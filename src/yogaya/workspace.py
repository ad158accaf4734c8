#!/usr/bin/env python3
"""
Workspace Bootstrap

Creates the .yogaya directory holding tenant.conf and cloud_accounts.conf and
puts it under git.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from .runner import CommandRunner

logger = logging.getLogger(__name__)

WORKSPACE_DIR_NAME = ".yogaya"
TENANT_CONF = "tenant.conf"
ACCOUNTS_CONF = "cloud_accounts.conf"


@dataclass
class WorkspaceInitResult:
    """What init_workspace did"""
    path: Path
    tenant_key: str
    git_initialized: bool
    git_output: str = ""


def hash_time(moment: datetime) -> str:
    """SHA-256 (hex) of a timestamp formatted as RFC 3339 at second precision"""
    return hashlib.sha256(moment.isoformat(timespec='seconds').encode('utf-8')).hexdigest()


def read_tenant_key(tenant_conf: Path) -> Optional[str]:
    for line in tenant_conf.read_text().splitlines():
        key, sep, value = line.partition('=')
        if sep and key.strip() == 'tenant_key':
            return value.strip()
    return None


def init_workspace(base_path: Optional[Union[str, Path]] = None,
                   force: bool = False,
                   runner: Optional[CommandRunner] = None,
                   now: Optional[datetime] = None) -> WorkspaceInitResult:
    """
    Initialize a yogaya workspace

    Args:
        base_path: Directory that will contain .yogaya (defaults to $HOME)
        force: Overwrite existing tenant.conf and cloud_accounts.conf
        runner: Command runner used for `git init`
        now: Timestamp the tenant key is derived from

    Returns:
        WorkspaceInitResult with the absolute workspace path
    """
    runner = runner or CommandRunner()
    base = Path(base_path).expanduser() if base_path else Path.home()
    workspace = (base / WORKSPACE_DIR_NAME).resolve()
    workspace.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Workspace directory {workspace}")

    tenant_conf = workspace / TENANT_CONF
    tenant_key = None
    if tenant_conf.exists() and not force:
        tenant_key = read_tenant_key(tenant_conf)
        logger.info(f"Keeping existing {tenant_conf}")

    if not tenant_key:
        tenant_key = hash_time(now or datetime.now(timezone.utc))
        tenant_conf.write_text(f"tenant_key={tenant_key}")

    accounts_conf = workspace / ACCOUNTS_CONF
    if accounts_conf.exists() and not force:
        logger.info(f"Keeping existing {accounts_conf}")
    else:
        accounts_conf.write_text("{}")

    result = runner.run(["git", "init", str(workspace)])
    if not result.ok:
        logger.warning(f"git init failed: {result.output.strip()}")

    return WorkspaceInitResult(
        path=workspace,
        tenant_key=tenant_key,
        git_initialized=result.ok,
        git_output=result.output
    )
