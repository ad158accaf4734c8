#!/usr/bin/env python3
"""
File Merger and Cleanup

Terraformer writes one directory per service, each holding provider.tf,
variables.tf, outputs.tf and resource files. This module consolidates such a
tree into a single all_resources_in_<name>.tf file and removes the working
artifacts afterwards.
"""

import os
import time
import shutil
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

MERGED_FILE_PREFIX = "all_resources_in_"
TERRAFORM_ARTIFACTS = (".terraform", ".terraform.lock.hcl", "main.tf")

PROVIDER_FILES = ("provider.tf",)
VARIABLE_FILES = ("variables.tf",)
OUTPUT_FILES = ("outputs.tf", "output.tf")

SECTION_HEADINGS = [
    ('provider', "# Provider Definitions"),
    ('variables', "# Variable Definitions"),
    ('resources', "# Resource Definitions"),
    ('outputs', "# Output Definitions"),
]


def merged_file_name(name: str) -> str:
    return f"{MERGED_FILE_PREFIX}{name}.tf"


def _iter_tf_files(source_dir: Path):
    """Yield .tf files under source_dir in a stable order, skipping .terraform"""
    for root, dirs, files in os.walk(source_dir):
        dirs[:] = sorted(d for d in dirs if d != ".terraform")
        for name in sorted(files):
            if name.endswith(".tf"):
                yield Path(root) / name


def merge_files(region_dir: Union[str, Path], output_file_name: str,
                source_dir: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """
    Consolidate every .tf file under a directory into one file

    Args:
        region_dir: Directory the merged file is written into
        output_file_name: Name of the merged file
        source_dir: Tree to read from (defaults to region_dir)

    Returns:
        Path of the merged file, or None when there was nothing to merge
    """
    region_dir = Path(region_dir)
    source_dir = Path(source_dir) if source_dir is not None else region_dir

    sections: Dict[str, List[str]] = {key: [] for key, _ in SECTION_HEADINGS}
    provider_written = False

    for path in _iter_tf_files(source_dir):
        name = path.name
        if name == output_file_name or name.startswith(MERGED_FILE_PREFIX):
            continue

        content = path.read_text(encoding="utf-8", errors="replace")
        if not content.strip():
            continue

        relative = path.relative_to(source_dir).as_posix()

        if name in PROVIDER_FILES:
            # Every service directory carries the same provider block
            if not provider_written:
                sections['provider'].append(content + "\n")
                provider_written = True
        elif name in VARIABLE_FILES:
            sections['variables'].append(
                f"# Start of {relative}\n\n{content}\n# End of {relative}\n\n")
        elif name in OUTPUT_FILES:
            sections['outputs'].append(
                f"# Start of {relative}\n\n{content}\n# End of {relative}\n\n")
        else:
            sections['resources'].append(
                f"# Start of {relative}\n\n{content}\n# End of {relative}\n\n")

    parts = []
    for key, heading in SECTION_HEADINGS:
        if sections[key]:
            parts.append(f"{heading}\n\n")
            parts.extend(sections[key])

    if not parts:
        logger.debug(f"No Terraform files to merge under {source_dir}")
        return None

    output_path = region_dir / output_file_name
    output_path.write_text("".join(parts), encoding="utf-8")
    logger.debug(f"Merged Terraform files into {output_path}")
    return output_path


def find_region_dirs(base_dir: Union[str, Path], provider_dir_name: str) -> List[Path]:
    """
    Locate region directories holding a Terraformer provider tree

    A region directory is the child of base_dir that contains a directory
    named provider_dir_name somewhere below it.
    """
    base_dir = Path(base_dir)
    regions = []

    for root, dirs, _ in os.walk(base_dir):
        dirs[:] = sorted(d for d in dirs if d != ".terraform")
        if provider_dir_name not in dirs:
            continue

        relative = Path(root).relative_to(base_dir)
        if not relative.parts:
            # Provider tree sits directly in base_dir; base_dir is the region
            region_dir = base_dir
        else:
            region_dir = base_dir / relative.parts[0]

        if region_dir not in regions:
            regions.append(region_dir)
        # Do not descend into the provider tree itself
        dirs.remove(provider_dir_name)

    return regions


def merge_region_tree(base_dir: Union[str, Path], provider_dir_name: str) -> List[Path]:
    """
    Merge every region directory under base_dir

    Returns:
        Paths of the merged files written
    """
    merged = []
    for region_dir in find_region_dirs(base_dir, provider_dir_name):
        output = merge_files(region_dir, merged_file_name(region_dir.name))
        if output:
            merged.append(output)
    logger.info(f"Merged {len(merged)} region directories under {base_dir}")
    return merged


def remove_path(path: Union[str, Path]):
    """Remove a file or directory tree; missing paths are ignored"""
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def remove_work_dir(region_dir: Union[str, Path], provider_dir_name: str):
    """Remove the Terraformer provider tree of a region"""
    remove_path(Path(region_dir) / provider_dir_name)


def cleanup_terraform_artifacts(directory: Union[str, Path]):
    """Remove .terraform, .terraform.lock.hcl and the bootstrap main.tf"""
    for artifact in TERRAFORM_ARTIFACTS:
        remove_path(Path(directory) / artifact)


def rename_dir_with_backup(path: Union[str, Path]) -> Optional[Path]:
    """
    Move an existing output directory out of the way

    Returns:
        The backup path, or None when path did not exist
    """
    path = Path(path)
    if not path.exists():
        return None

    timestamp = time.strftime('%Y%m%d-%H%M%S')
    backup = path.with_name(f"{path.name}.backup-{timestamp}")
    counter = 1
    while backup.exists():
        backup = path.with_name(f"{path.name}.backup-{timestamp}-{counter}")
        counter += 1

    path.rename(backup)
    logger.info(f"Moved existing output {path} to {backup}")
    return backup
