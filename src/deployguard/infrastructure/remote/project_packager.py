"""Lays artifacts out as a source-format project directory."""

from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path

import structlog

from deployguard.domain.errors import PackagingError
from deployguard.domain.models.artifacts import ArtifactBundle
from deployguard.domain.models.deployment import DeploymentPackage
from deployguard.domain.ports.services import ArtifactPackager


logger = structlog.get_logger(__name__)

SOURCE_ROOT = Path("force-app") / "main" / "default"

# File suffix -> (folder, metadata type)
SOURCE_FOLDERS: dict[str, tuple[str, str]] = {
    ".cls": ("classes", "ApexClass"),
    ".trigger": ("triggers", "ApexTrigger"),
}

METADATA_FOLDERS: dict[str, tuple[str, str]] = {
    ".object": ("objects", "CustomObject"),
    ".field": ("fields", "CustomField"),
    ".flow": ("flows", "Flow"),
    ".permissionset": ("permissionsets", "PermissionSet"),
}


def folder_for(name: str, is_source: bool) -> tuple[str, str]:
    """Folder and metadata type for an artifact file name."""
    table = SOURCE_FOLDERS if is_source else METADATA_FOLDERS
    for marker, entry in table.items():
        if marker in name:
            return entry
    return ("classes", "ApexClass") if is_source else ("objects", "CustomObject")


def meta_xml(metadata_type: str, api_version: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<{metadata_type} xmlns="http://soap.sforce.com/2006/04/metadata">\n'
        f"    <apiVersion>{api_version}</apiVersion>\n"
        "    <status>Active</status>\n"
        f"</{metadata_type}>\n"
    )


class SourceProjectPackager(ArtifactPackager):
    """Writes one project directory per deployment under ``work_dir``."""

    def __init__(self, work_dir: str | Path, api_version: str = "60.0") -> None:
        self._work_dir = Path(work_dir)
        self._api_version = api_version

    async def package(self, artifacts: ArtifactBundle, deployment_id: str) -> DeploymentPackage:
        if artifacts.is_empty:
            raise PackagingError("No artifacts to package")
        root = self._work_dir / deployment_id
        try:
            await asyncio.to_thread(self._write_project, root, artifacts)
        except OSError as e:
            raise PackagingError(f"Could not write deployment package: {e}") from e

        logger.info(
            "package_created",
            deployment_id=deployment_id,
            root=str(root),
            components=len(artifacts.names),
        )
        return DeploymentPackage(
            deployment_id=deployment_id,
            root=str(root),
            artifacts=artifacts,
            components=[a.component_name for a in artifacts.iter_artifacts()],
        )

    async def discard(self, package: DeploymentPackage) -> None:
        root = Path(package.root)
        if root.exists():
            await asyncio.to_thread(shutil.rmtree, root)
            logger.debug("package_discarded", deployment_id=package.deployment_id)

    def _write_project(self, root: Path, artifacts: ArtifactBundle) -> None:
        source_root = root / SOURCE_ROOT
        source_root.mkdir(parents=True, exist_ok=True)
        project = {
            "packageDirectories": [{"path": "force-app", "default": True}],
            "namespace": "",
            "sfdcLoginUrl": "https://test.salesforce.com",
            "sourceApiVersion": self._api_version,
        }
        (root / "sfdx-project.json").write_text(json.dumps(project, indent=2), encoding="utf-8")

        for name, content in artifacts.sources.items():
            folder, metadata_type = folder_for(name, is_source=True)
            target_dir = source_root / folder
            target_dir.mkdir(exist_ok=True)
            (target_dir / name).write_text(content, encoding="utf-8")
            (target_dir / f"{name}-meta.xml").write_text(
                meta_xml(metadata_type, self._api_version), encoding="utf-8"
            )

        for name, content in artifacts.metadata.items():
            folder, _ = folder_for(name, is_source=False)
            target_dir = source_root / folder
            target_dir.mkdir(exist_ok=True)
            (target_dir / name).write_text(content, encoding="utf-8")
