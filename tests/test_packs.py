# SPDX-License-Identifier: GPL-3.0-only
# Copyright (C) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Pack Installer Tests

Run with: pytest tests/test_packs.py -v
"""

import asyncio
import json
import zipfile
import pytest

WORLD = "Survival"
BP_UUID = "11111111-1111-1111-1111-111111111111"
RP_UUID = "22222222-2222-2222-2222-222222222222"


def _manifest(uuid, name, version=(1, 0, 0), module_type="data"):
    data = {
        "format_version": 2,
        "header": {"uuid": uuid, "name": name, "version": list(version)},
        "modules": [{"type": module_type, "uuid": uuid[::-1], "version": list(version)}],
    }
    return json.dumps(data)


def _zip(path, entries):
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return path


@pytest.fixture
def installer(tmp_path):
    from bedrock_manager.fs_ops import ManagedRoots
    from bedrock_manager.packs import PackInstaller

    roots = ManagedRoots(tmp_path / "server", tmp_path / "temp", tmp_path / "backup")
    roots.ensure_exist()
    (roots.server_directory / "worlds" / WORLD).mkdir(parents=True)
    return PackInstaller(roots)


def _registry(installer, filename):
    path = installer.server_dir / "worlds" / WORLD / filename
    return json.loads(path.read_text())


def _upload(installer, archive, filename, pack_type="behavior", world=WORLD):
    return asyncio.run(installer.upload_pack(archive, filename, pack_type, world))


def test_single_pack_installed_and_registered(installer, tmp_path):
    archive = _zip(tmp_path / "upload.tmp", {
        "manifest.json": _manifest(BP_UUID, "Cool Mobs!"),
        "entities/zombie.json": "{}",
    })

    result = _upload(installer, archive, "cool.mcpack")

    assert result.success is True
    assert result.message == f"Pack 'Cool Mobs!' uploaded and applied to {WORLD}. Restart server if needed."
    pack_dir = installer.server_dir / "behavior_packs" / "Cool_Mobs_"
    assert (pack_dir / "manifest.json").exists()
    assert (pack_dir / "entities" / "zombie.json").exists()
    assert _registry(installer, "world_behavior_packs.json") == [
        {"pack_id": BP_UUID, "version": [1, 0, 0]}
    ]
    assert not archive.exists()


def test_single_pack_nested_root(installer, tmp_path):
    archive = _zip(tmp_path / "upload.tmp", {
        "Textures/manifest.json": _manifest(RP_UUID, "Textures", module_type="resources"),
        "Textures/textures/blocks/stone.png": "png",
    })

    result = _upload(installer, archive, "textures.mcpack", pack_type="resource")

    assert result.success is True
    pack_dir = installer.server_dir / "resource_packs" / "Textures"
    assert (pack_dir / "textures" / "blocks" / "stone.png").read_text() == "png"
    assert _registry(installer, "world_resource_packs.json")[0]["pack_id"] == RP_UUID


def test_dev_category_uses_development_dir(installer, tmp_path):
    archive = _zip(tmp_path / "upload.tmp", {"manifest.json": _manifest(BP_UUID, "Dev")})

    result = _upload(installer, archive, "dev.mcpack", pack_type="dev_behavior")

    assert result.success is True
    assert (installer.server_dir / "development_behavior_packs" / "Dev" / "manifest.json").exists()
    assert _registry(installer, "world_behavior_packs.json")[0]["pack_id"] == BP_UUID


def test_reupload_replaces_registry_entry(installer, tmp_path):
    """Same uuid twice: one registry entry carrying the second version."""
    first = _zip(tmp_path / "a.tmp", {"manifest.json": _manifest(BP_UUID, "Mobs"), "old.json": "{}"})
    second = _zip(tmp_path / "b.tmp", {"manifest.json": _manifest(BP_UUID, "Mobs", version=(1, 1, 0))})

    _upload(installer, first, "mobs.mcpack")
    _upload(installer, second, "mobs.mcpack")

    assert _registry(installer, "world_behavior_packs.json") == [
        {"pack_id": BP_UUID, "version": [1, 1, 0]}
    ]
    # The previous pack directory is replaced, not merged
    assert not (installer.server_dir / "behavior_packs" / "Mobs" / "old.json").exists()


def test_registry_keeps_other_packs(installer, tmp_path):
    registry = installer.server_dir / "worlds" / WORLD / "world_behavior_packs.json"
    registry.write_text(json.dumps([{"pack_id": "other", "version": [0, 0, 1]}]))
    archive = _zip(tmp_path / "upload.tmp", {"manifest.json": _manifest(BP_UUID, "Mobs")})

    _upload(installer, archive, "mobs.mcpack")

    assert [e["pack_id"] for e in _registry(installer, "world_behavior_packs.json")] == ["other", BP_UUID]


def test_non_array_registry_reinitialised(installer, tmp_path):
    registry = installer.server_dir / "worlds" / WORLD / "world_behavior_packs.json"
    registry.write_text(json.dumps({"not": "a list"}))
    archive = _zip(tmp_path / "upload.tmp", {"manifest.json": _manifest(BP_UUID, "Mobs")})

    result = _upload(installer, archive, "mobs.mcpack")

    assert result.success is True
    assert _registry(installer, "world_behavior_packs.json") == [{"pack_id": BP_UUID, "version": [1, 0, 0]}]


def test_corrupt_registry_rolls_back_pack(installer, tmp_path):
    registry = installer.server_dir / "worlds" / WORLD / "world_behavior_packs.json"
    registry.write_text("{broken json")
    archive = _zip(tmp_path / "upload.tmp", {"manifest.json": _manifest(BP_UUID, "Mobs")})

    result = _upload(installer, archive, "mobs.mcpack")

    assert result.success is False
    assert "world_behavior_packs.json" in result.message
    assert not (installer.server_dir / "behavior_packs" / "Mobs").exists()
    assert registry.read_text() == "{broken json"
    assert not archive.exists()


def test_missing_world_rejected(installer, tmp_path):
    archive = _zip(tmp_path / "upload.tmp", {"manifest.json": _manifest(BP_UUID, "Mobs")})

    result = _upload(installer, archive, "mobs.mcpack", world="Nowhere")

    assert result.success is False
    assert result.message == "World 'Nowhere' not found."
    assert not archive.exists()


def test_invalid_manifest_rejected(installer, tmp_path):
    archive = _zip(tmp_path / "upload.tmp", {"manifest.json": json.dumps({"header": {"name": "x"}})})

    result = _upload(installer, archive, "bad.mcpack")

    assert result.success is False
    assert "missing header" in result.message


def test_missing_manifest_rejected(installer, tmp_path):
    archive = _zip(tmp_path / "upload.tmp", {"readme.txt": "hello"})

    result = _upload(installer, archive, "bad.mcpack")

    assert result.success is False
    assert result.message == "manifest.json not found in the uploaded .mcpack."


def test_invalid_pack_type_rejected(installer, tmp_path):
    archive = _zip(tmp_path / "upload.tmp", {"manifest.json": _manifest(BP_UUID, "Mobs")})

    result = _upload(installer, archive, "mobs.mcpack", pack_type="skins")

    assert result.success is False
    assert not archive.exists()


def test_corrupt_archive_reported(installer, tmp_path):
    archive = tmp_path / "upload.tmp"
    archive.write_bytes(b"definitely not a zip")

    result = _upload(installer, archive, "mobs.mcpack")

    assert result.success is False
    assert result.message.startswith("Error processing pack:")
    assert not archive.exists()


def test_unsafe_entry_rejected(installer, tmp_path):
    archive = _zip(tmp_path / "upload.tmp", {
        "manifest.json": _manifest(BP_UUID, "Mobs"),
        "../../escape.txt": "bad",
    })

    result = _upload(installer, archive, "mobs.mcpack")

    assert result.success is False
    assert not (installer.server_dir / "behavior_packs" / "Mobs").exists()
    assert not (tmp_path / "escape.txt").exists()


def test_unsafe_reupload_keeps_installed_pack(installer, tmp_path):
    good = _zip(tmp_path / "a.tmp", {"manifest.json": _manifest(BP_UUID, "Mobs"), "entities/a.json": "{}"})
    evil = _zip(tmp_path / "b.tmp", {
        "manifest.json": _manifest(BP_UUID, "Mobs", version=(2, 0, 0)),
        "../../escape.txt": "bad",
    })

    _upload(installer, good, "mobs.mcpack")
    result = _upload(installer, evil, "mobs.mcpack")

    assert result.success is False
    assert (installer.server_dir / "behavior_packs" / "Mobs" / "entities" / "a.json").exists()
    assert _registry(installer, "world_behavior_packs.json") == [
        {"pack_id": BP_UUID, "version": [1, 0, 0]}
    ]


def test_bundle_classifies_packs(installer, tmp_path):
    archive = _zip(tmp_path / "upload.tmp", {
        "Mobs BP/manifest.json": _manifest(BP_UUID, "Mobs BP", module_type="data"),
        "Mobs BP/entities/zombie.json": "{}",
        "Mobs RP/manifest.json": _manifest(RP_UUID, "Mobs RP", module_type="resources"),
        "Mobs RP/textures/zombie.png": "png",
    })

    result = _upload(installer, archive, "mobs.mcaddon", pack_type=None)

    assert result.success is True
    assert "2 pack(s) processed" in result.message
    assert (installer.server_dir / "behavior_packs" / "Mobs_BP" / "entities" / "zombie.json").exists()
    assert (installer.server_dir / "resource_packs" / "Mobs_RP" / "textures" / "zombie.png").exists()
    assert _registry(installer, "world_behavior_packs.json")[0]["pack_id"] == BP_UUID
    assert _registry(installer, "world_resource_packs.json")[0]["pack_id"] == RP_UUID


def test_bundle_partial_success(installer, tmp_path):
    """One valid and one invalid manifest: success, with the skip reported."""
    archive = _zip(tmp_path / "upload.tmp", {
        "good/manifest.json": _manifest(BP_UUID, "Good", module_type="script"),
        "bad/manifest.json": "{ not json",
    })

    result = _upload(installer, archive, "mixed.mcaddon", pack_type=None)

    assert result.success is True
    assert "1 pack(s) processed" in result.message
    assert "Skipped pack from bad/manifest.json (invalid manifest)." in result.message


def test_bundle_unsafe_pack_is_skipped(installer, tmp_path):
    """An unsafe pack is reported and skipped; the other pack still applies."""
    archive = _zip(tmp_path / "upload.tmp", {
        "A BP/manifest.json": _manifest(BP_UUID, "A BP", module_type="data"),
        "A BP/entities/a.json": "{}",
        "B RP/manifest.json": _manifest(RP_UUID, "B RP", module_type="resources"),
        "B RP/../../escape.txt": "bad",
    })

    result = _upload(installer, archive, "mixed.mcaddon", pack_type=None)

    assert result.success is True
    assert "1 pack(s) processed" in result.message
    assert "Applied pack 'A BP'." in result.message
    assert "Failed to apply pack 'B RP'" in result.message
    assert (installer.server_dir / "behavior_packs" / "A_BP" / "entities" / "a.json").exists()
    assert _registry(installer, "world_behavior_packs.json")[0]["pack_id"] == BP_UUID
    assert not (installer.server_dir / "resource_packs" / "B_RP").exists()
    assert not (installer.server_dir / "worlds" / WORLD / "world_resource_packs.json").exists()
    assert not (tmp_path / "escape.txt").exists()
    assert not archive.exists()


def test_bundle_without_valid_packs_fails(installer, tmp_path):
    archive = _zip(tmp_path / "upload.tmp", {
        "mystery/manifest.json": _manifest(BP_UUID, "Mystery", module_type="skin_pack"),
        "broken/manifest.json": "[]",
    })

    result = _upload(installer, archive, "nothing.mcaddon", pack_type=None)

    assert result.success is False
    assert result.message.startswith("Failed to process any valid packs from the .mcaddon.")
    assert "Skipped pack 'Mystery' (unknown type)." in result.message


@pytest.mark.parametrize("module_types,root,expected", [
    (["data"], "", "behavior"),
    (["script"], "", "behavior"),
    (["resources"], "", "resource"),
    (["client_data", "resources"], "", "resource"),
    ([], "addon/My_Behavior_Pack", "behavior"),
    ([], "addon/My Resource Pack", "resource"),
    (["skin_pack"], "skins", None),
])
def test_infer_category(module_types, root, expected):
    from bedrock_manager.packs import PackManifest, infer_category

    manifest = PackManifest(uuid="u", version=[1, 0, 0], name="n", module_types=module_types, root=root)

    assert infer_category(manifest) == expected


@pytest.mark.parametrize("name,expected", [
    ("Cool Pack", "Cool_Pack"),
    ("my-pack_2", "my-pack_2"),
    ("§aColour", "_aColour"),
])
def test_sanitize_dir_name(name, expected):
    from bedrock_manager.packs import sanitize_dir_name

    assert sanitize_dir_name(name, "uuid") == expected


def test_sanitize_dir_name_falls_back_to_uuid():
    from bedrock_manager.packs import sanitize_dir_name

    assert sanitize_dir_name("", BP_UUID) == BP_UUID
