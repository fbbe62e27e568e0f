"""Component-registration discovery and import helpers."""

from __future__ import annotations

import importlib
from pathlib import Path

_DISCOVERY_ROOTS = ("actors", "services", "resources")


def discover_component_modules(repo_root: Path | None = None) -> tuple[str, ...]:
    """Return import paths for explicit component declaration modules."""
    root = (repo_root or Path.cwd()).resolve()
    modules: list[str] = []
    for discovery_root in _DISCOVERY_ROOTS:
        package_root = root / discovery_root
        if not package_root.exists():
            continue
        for component_file in sorted(package_root.rglob("component.py")):
            rel_component = component_file.relative_to(root)
            if "tests" in rel_component.parts:
                continue
            if not _looks_like_component_registration(component_file):
                continue
            modules.append(".".join(rel_component.with_suffix("").parts))
    return tuple(modules)


def import_registered_component_modules(
    repo_root: Path | None = None,
) -> tuple[str, ...]:
    """Discover and import all component declaration modules."""
    imported: list[str] = []
    for module in discover_component_modules(repo_root=repo_root):
        importlib.import_module(module)
        imported.append(module)
    return tuple(imported)


def _looks_like_component_registration(component_file: Path) -> bool:
    """Return True when ``component.py`` appears to declare a component MANIFEST."""
    source = component_file.read_text(encoding="utf-8")
    return "MANIFEST" in source and "register_component(" in source
