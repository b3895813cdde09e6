# -*- coding: utf-8 -*-

"""
Centralized registry of upload profiles.
"""

import platformdirs
from pathlib import Path
from datetime import datetime
from typing import Dict, Optional, List
import logging

from .misc import read_yaml, write_yaml


# Global registry instance
_registry = None


class ProfileRegistry:
    """
    Per-user registry mapping profile names to their YAML files.

    Args:
        registry_path (Path, optional): Registry file. Defaults to the
            platform specific user config directory.
    """

    def __init__(self, registry_path: Optional[Path] = None):
        self.registry_path = Path(registry_path) if registry_path else self._get_registry_path()
        self._ensure_registry_exists()

    def _get_registry_path(self) -> Path:
        config_dir = platformdirs.user_config_dir("sap-batch-manager", "sapbm")
        return Path(config_dir) / "profiles_registry.yaml"

    def _ensure_registry_exists(self):
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.registry_path.exists():
            self._save_registry({"profiles": {}})

    def _load_registry(self) -> Dict:
        try:
            registry = read_yaml(self.registry_path) or {}
        except Exception as e:
            logging.warning(f"Error loading registry: {e}. Creating new registry.")
            registry = {}
        registry.setdefault("profiles", {})
        return registry

    def _save_registry(self, registry: Dict):
        try:
            write_yaml(registry, self.registry_path)
        except Exception as e:
            logging.error(f"Error saving registry: {e}")
            raise

    def register_profile(self, name: str, config_path: str, base_folder: str):
        """Register (or re-register) a profile."""
        registry = self._load_registry()
        previous = registry["profiles"].get(name, {})
        now = datetime.now().isoformat()

        registry["profiles"][name] = {
            "config_path": str(Path(config_path).resolve()),
            "base_folder": str(Path(base_folder).resolve()),
            "created_at": previous.get("created_at", now),
            "last_accessed": now
        }

        self._save_registry(registry)
        logging.debug(f"Registered profile '{name}' in global registry")

    def get_profile_config(self, name: str) -> Optional[Dict]:
        """Load the configuration of a profile, None if unknown or missing."""
        registry = self._load_registry()
        info = registry["profiles"].get(name)
        if not info:
            return None

        config_path = Path(info["config_path"])
        if not config_path.exists():
            logging.warning(f"Config file for profile '{name}' no longer exists: {config_path}")
            return None

        info["last_accessed"] = datetime.now().isoformat()
        self._save_registry(registry)

        try:
            return read_yaml(config_path)
        except Exception as e:
            logging.error(f"Error loading config for profile '{name}': {e}")
            return None

    def list_profiles(self) -> List[Dict]:
        """List all registered profiles, most recently used first."""
        registry = self._load_registry()
        profiles = []
        for name, info in registry["profiles"].items():
            profiles.append({
                "name": name,
                "base_folder": info["base_folder"],
                "created_at": info["created_at"],
                "last_accessed": info["last_accessed"],
                "config_exists": Path(info["config_path"]).exists()
            })
        return sorted(profiles, key=lambda x: x["last_accessed"], reverse=True)

    def unregister_profile(self, name: str) -> bool:
        """Remove a profile from the registry. Its files are kept."""
        registry = self._load_registry()
        if name in registry["profiles"]:
            del registry["profiles"][name]
            self._save_registry(registry)
            logging.info(f"Unregistered profile '{name}' from global registry")
            return True
        return False

    def cleanup_orphaned_profiles(self) -> List[str]:
        """Remove profiles whose config files no longer exist."""
        registry = self._load_registry()
        orphaned = [
            name for name, info in registry["profiles"].items()
            if not Path(info["config_path"]).exists()
        ]
        for name in orphaned:
            del registry["profiles"][name]
        if orphaned:
            self._save_registry(registry)
            logging.info(f"Cleaned up {len(orphaned)} orphaned profiles: {orphaned}")
        return orphaned


def get_registry() -> ProfileRegistry:
    """Get the global profile registry instance."""
    global _registry
    if _registry is None:
        _registry = ProfileRegistry()
    return _registry
