"""
Tests for the upload profile registry.
"""

from sap_batch_manager.core.utils.misc import write_yaml
from sap_batch_manager.core.utils.registry import get_registry


def _profile_file(tmp_path, name):
    base = tmp_path / name
    base.mkdir()
    path = base / "ProfileFile.yaml"
    write_yaml({"profile": name, "base_folder": str(base)}, path)
    return path, base


def test_get_registry_returns_patched_instance(registry):
    assert get_registry() is registry


def test_register_and_load_profile(registry, tmp_path):
    path, base = _profile_file(tmp_path, "invoices")
    registry.register_profile("invoices", str(path), str(base))

    assert registry.get_profile_config("invoices") == {"profile": "invoices", "base_folder": str(base)}
    assert registry.get_profile_config("unknown") is None


def test_list_profiles(registry, tmp_path):
    for name in ("invoices", "journal"):
        path, base = _profile_file(tmp_path, name)
        registry.register_profile(name, str(path), str(base))

    profiles = registry.list_profiles()
    assert {p["name"] for p in profiles} == {"invoices", "journal"}
    assert all(p["config_exists"] for p in profiles)


def test_missing_profile_file(registry, tmp_path):
    path, base = _profile_file(tmp_path, "assets")
    registry.register_profile("assets", str(path), str(base))
    path.unlink()

    assert registry.get_profile_config("assets") is None
    assert registry.cleanup_orphaned_profiles() == ["assets"]
    assert registry.list_profiles() == []


def test_unregister_profile(registry, tmp_path):
    path, base = _profile_file(tmp_path, "wbs")
    registry.register_profile("wbs", str(path), str(base))

    assert registry.unregister_profile("wbs")
    assert not registry.unregister_profile("wbs")
    assert path.exists()
