# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Pack Installer

Applies uploaded content archives to a world:
  - .mcpack: a single pack; the caller chooses its category
  - .mcaddon: a bundle; each pack is classified from its manifest

Each pack is unpacked into <server>/<category dir>/<sanitised name> and
registered in the world's world_behavior_packs.json or
world_resource_packs.json as {"pack_id": uuid, "version": [x, y, z]}.
A pack whose registry update fails is removed again.
"""

import asyncio
import json
import logging
import re
import shutil
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

from . import fs_ops
from .downloader import safe_member_path
from .errors import FilesystemError, ManagerError, ParseError
from .fs_ops import ManagedRoots
from .properties import validate_world_name, world_path
from .schemas import OperationResult

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"
BUNDLE_EXTENSION = ".mcaddon"
PACK_EXTENSIONS = (".mcpack", BUNDLE_EXTENSION)

BEHAVIOR_REGISTRY = "world_behavior_packs.json"
RESOURCE_REGISTRY = "world_resource_packs.json"

# category -> (install subdirectory, registry file)
CATEGORIES: Dict[str, Tuple[str, str]] = {
    "behavior": ("behavior_packs", BEHAVIOR_REGISTRY),
    "resource": ("resource_packs", RESOURCE_REGISTRY),
    "dev_behavior": ("development_behavior_packs", BEHAVIOR_REGISTRY),
    "dev_resource": ("development_resource_packs", RESOURCE_REGISTRY),
}

BEHAVIOR_MODULE_TYPES = ("data", "script")
RESOURCE_MODULE_TYPES = ("resources",)


# =============================================================================
# MANIFESTS
# =============================================================================

@dataclass
class PackManifest:
    """Identity of one pack, read from its manifest.json header."""
    uuid: str
    version: List[int]
    name: str
    module_types: List[str] = field(default_factory=list)
    root: str = ""

    @classmethod
    def parse(cls, raw: bytes, entry_name: str) -> "PackManifest":
        """Parse manifest bytes.

        Raises:
            ParseError: On invalid JSON or a header lacking uuid/version/name.
        """
        try:
            data = json.loads(raw.decode("utf-8-sig"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ParseError(f"Invalid JSON in {entry_name}: {e}") from e

        header = data.get("header") if isinstance(data, dict) else None
        if not isinstance(header, dict) or not all(header.get(k) for k in ("uuid", "version", "name")):
            raise ParseError(f"Invalid manifest {entry_name}: missing header, uuid, version, or name")

        modules = data.get("modules") or []
        module_types = [
            str(module.get("type", "")).lower()
            for module in modules
            if isinstance(module, dict)
        ]
        root = str(PurePosixPath(entry_name).parent)
        return cls(
            uuid=str(header["uuid"]),
            version=header["version"],
            name=str(header["name"]),
            module_types=module_types,
            root="" if root == "." else root,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"pack_id": self.uuid, "version": self.version}


def category_from_modules(module_types: List[str]) -> Optional[str]:
    """First module with a recognised type decides the category."""
    for module_type in module_types:
        if module_type in BEHAVIOR_MODULE_TYPES:
            return "behavior"
        if module_type in RESOURCE_MODULE_TYPES:
            return "resource"
    return None


def category_from_path(pack_root: str) -> Optional[str]:
    """Fallback: guess from the pack's folder name inside the archive."""
    lowered = pack_root.lower()
    if "behavior" in lowered or "behaviour" in lowered:
        return "behavior"
    if "resource" in lowered:
        return "resource"
    return None


def infer_category(manifest: PackManifest) -> Optional[str]:
    category = category_from_modules(manifest.module_types)
    if category is None:
        category = category_from_path(manifest.root)
        if category is not None:
            logger.debug("Classified pack '%s' as %s from its path '%s'", manifest.name, category, manifest.root)
    return category


def sanitize_dir_name(name: str, fallback: str) -> str:
    """Replace anything outside [A-Za-z0-9_-] with '_'; empty names use fallback."""
    cleaned = re.sub(r"[^a-zA-Z0-9_-]", "_", name)
    return cleaned or fallback


# =============================================================================
# WORLD REGISTRY
# =============================================================================

class PackRegistry:
    """A world's pack list file: a JSON array of {pack_id, version}."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> List[Dict[str, Any]]:
        """Read entries. A missing file or non-array content yields [].

        Raises:
            ParseError: If the file is not valid JSON.
            FilesystemError: If the file cannot be read.
        """
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except ValueError as e:
            raise ParseError(f"Invalid JSON in {self.path}: {e}") from e
        except OSError as e:
            raise FilesystemError(f"Failed to read {self.path}: {e}") from e
        if not isinstance(data, list):
            logger.warning("Invalid format in %s. Expected array. Re-initializing.", self.path)
            return []
        return data

    def save(self, entries: List[Dict[str, Any]]) -> None:
        temp_path = self.path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(entries, f, indent=2)
            temp_path.replace(self.path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise FilesystemError(f"Failed to write {self.path}: {e}") from e

    def upsert(self, manifest: PackManifest) -> None:
        """Drop any entry with the same pack_id, then append this pack."""
        entries = [
            entry for entry in self.load()
            if not (isinstance(entry, dict) and entry.get("pack_id") == manifest.uuid)
        ]
        entries.append(manifest.to_dict())
        self.save(entries)
        logger.info("Updated %s with pack ID: %s", self.path, manifest.uuid)


# =============================================================================
# INSTALLER
# =============================================================================

def _find_manifests(archive: zipfile.ZipFile) -> List[str]:
    names = [
        info.filename for info in archive.infolist()
        if not info.is_dir() and PurePosixPath(info.filename).name == MANIFEST_FILE
    ]
    # Shallowest first: for a single pack the outermost manifest is the pack's own
    return sorted(names, key=lambda n: (len(PurePosixPath(n).parts), n))


def _pack_members(archive: zipfile.ZipFile, pack_root: str) -> List[Tuple[zipfile.ZipInfo, PurePosixPath]]:
    """Files under pack_root with their relative paths, all validated up front.

    Raises:
        FilesystemError: If any member would land outside the pack directory.
    """
    prefix = f"{pack_root}/" if pack_root else ""
    members = []
    for info in archive.infolist():
        if info.is_dir() or not info.filename.startswith(prefix):
            continue
        relative = safe_member_path(info.filename[len(prefix):])
        if relative.parts:
            members.append((info, relative))
    return members


def _extract_pack(archive: zipfile.ZipFile, members: List[Tuple[zipfile.ZipInfo, PurePosixPath]], dest: Path) -> int:
    for info, relative in members:
        target = dest.joinpath(*relative.parts)
        target.parent.mkdir(parents=True, exist_ok=True)
        with archive.open(info) as src, open(target, "wb") as out:
            shutil.copyfileobj(src, out)
    return len(members)


class PackInstaller:
    """Installs .mcpack/.mcaddon uploads into the active server's worlds.

    Usage:
        installer = PackInstaller(roots)
        result = await installer.upload_pack(tmp, "cool.mcpack", "behavior", "Bedrock level")
    """

    def __init__(self, roots: ManagedRoots):
        self.roots = roots
        self._lock = asyncio.Lock()

    @property
    def server_dir(self) -> Path:
        return self.roots.server_directory

    async def upload_pack(
        self,
        archive_path: Path,
        original_filename: str,
        requested_type: Optional[str],
        world_name: str,
    ) -> OperationResult:
        """Apply an uploaded archive to a world. The archive is always deleted."""
        archive_path = Path(archive_path)
        try:
            async with self._lock:
                return await asyncio.to_thread(
                    self._upload, archive_path, original_filename, requested_type, world_name,
                )
        except (ManagerError, zipfile.BadZipFile, OSError) as e:
            logger.error("Error processing pack upload for %s: %s", original_filename, e)
            return OperationResult.fail(f"Error processing pack: {e}")
        finally:
            try:
                archive_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not delete temporary file %s: %s", archive_path, e)

    def _upload(
        self,
        archive_path: Path,
        original_filename: str,
        requested_type: Optional[str],
        world_name: str,
    ) -> OperationResult:
        if not world_name:
            return OperationResult.fail("World name is required.")
        if not validate_world_name(world_name):
            return OperationResult.fail("Invalid world name.")
        world_dir = world_path(self.server_dir, world_name)
        if not world_dir.is_dir():
            return OperationResult.fail(f"World '{world_name}' not found.")

        with zipfile.ZipFile(archive_path) as archive:
            if not archive.infolist():
                return OperationResult.fail("Uploaded file is empty or invalid.")
            if original_filename.lower().endswith(BUNDLE_EXTENSION):
                return self._install_bundle(archive, original_filename, world_dir)
            return self._install_single(archive, original_filename, requested_type, world_dir, world_name)

    def _install_single(
        self,
        archive: zipfile.ZipFile,
        original_filename: str,
        requested_type: Optional[str],
        world_dir: Path,
        world_name: str,
    ) -> OperationResult:
        logger.info("Processing .mcpack file: %s with requested type: %s", original_filename, requested_type)
        if requested_type not in CATEGORIES:
            return OperationResult.fail("Invalid pack type specified for .mcpack.")

        manifests = _find_manifests(archive)
        if not manifests:
            return OperationResult.fail("manifest.json not found in the uploaded .mcpack.")
        try:
            manifest = PackManifest.parse(archive.read(manifests[0]), manifests[0])
        except ParseError as e:
            return OperationResult.fail(str(e))

        if not self._apply(archive, manifest, requested_type, world_dir):
            registry = CATEGORIES[requested_type][1]
            return OperationResult.fail(f"Failed to update {registry} for .mcpack '{manifest.name}'.")
        return OperationResult.ok(
            f"Pack '{manifest.name}' uploaded and applied to {world_name}. Restart server if needed."
        )

    def _install_bundle(self, archive: zipfile.ZipFile, original_filename: str, world_dir: Path) -> OperationResult:
        logger.info("Processing .mcaddon file: %s", original_filename)
        manifests = _find_manifests(archive)
        if not manifests:
            return OperationResult.fail("No valid packs found within the .mcaddon file.")

        messages: List[str] = []
        applied = 0
        for entry_name in manifests:
            try:
                manifest = PackManifest.parse(archive.read(entry_name), entry_name)
            except ParseError as e:
                logger.warning("Skipping pack in .mcaddon: %s", e)
                messages.append(f"Skipped pack from {entry_name} (invalid manifest).")
                continue

            category = infer_category(manifest)
            if category is None:
                logger.warning(
                    "Skipping pack '%s' in .mcaddon: could not determine pack type from %s",
                    manifest.name, entry_name,
                )
                messages.append(f"Skipped pack '{manifest.name}' (unknown type).")
                continue

            try:
                applied_ok = self._apply(archive, manifest, category, world_dir)
            except (ManagerError, OSError) as e:
                logger.warning("Skipping pack '%s' in .mcaddon: %s", manifest.name, e)
                messages.append(f"Failed to apply pack '{manifest.name}' ({e}).")
                continue
            if applied_ok:
                messages.append(f"Applied pack '{manifest.name}'.")
                applied += 1
            else:
                messages.append(f"Failed to apply pack '{manifest.name}' to world JSON.")

        details = " ".join(messages)
        if applied == 0:
            return OperationResult.fail(f"Failed to process any valid packs from the .mcaddon. {details}")
        return OperationResult.ok(
            f".mcaddon processing complete. {applied} pack(s) processed. "
            f"Details: {details} Restart server if needed."
        )

    def _apply(self, archive: zipfile.ZipFile, manifest: PackManifest, category: str, world_dir: Path) -> bool:
        """Extract one pack and register it. False if the registry update failed.

        Raises:
            FilesystemError: If the pack has unsafe entries or cannot be
                extracted. An unsafe pack leaves any installed copy in place.
        """
        subdir, registry_file = CATEGORIES[category]
        pack_dir = self.server_dir / subdir / sanitize_dir_name(manifest.name, manifest.uuid)
        members = _pack_members(archive, manifest.root)

        if pack_dir.exists():
            logger.info("Removing existing directory for pack '%s': %s", manifest.name, pack_dir)
            fs_ops.remove_tree(pack_dir, self.roots)
        pack_dir.mkdir(parents=True)

        try:
            count = _extract_pack(archive, members, pack_dir)
        except BaseException:
            fs_ops.remove_tree(pack_dir, self.roots)
            raise
        logger.info("Extracted pack '%s' to %s (%d files)", manifest.name, pack_dir, count)

        try:
            PackRegistry(world_dir / registry_file).upsert(manifest)
        except ManagerError as e:
            logger.error("Failed to update %s: %s", world_dir / registry_file, e)
            fs_ops.remove_tree(pack_dir, self.roots)
            return False
        return True
