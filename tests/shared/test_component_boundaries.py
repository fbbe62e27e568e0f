"""System-level static checks for component import boundaries.

Runtime code may reach another service only through that service's
``public_api_roots``; L0 resources never import services; and the state
system never imports from the action system.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass
from pathlib import Path

from packages.ledger_shared.component_loader import import_registered_component_modules
from packages.ledger_shared.manifest import get_registry

REPO_ROOT = Path(__file__).resolve().parents[2]
_RUNTIME_SCAN_ROOTS = ("services", "resources", "actors", "packages")


@dataclass(frozen=True)
class _ServiceBoundary:
    service_id: str
    system: str
    module_roots: tuple[str, ...]
    public_api_roots: tuple[str, ...]

    def owns(self, module_name: str) -> bool:
        return any(_is_equal_or_child(module_name, root) for root in self.module_roots)

    def is_public(self, module_name: str) -> bool:
        return any(
            _is_equal_or_child(module_name, root) for root in self.public_api_roots
        )


def test_runtime_code_imports_only_service_public_api_surfaces() -> None:
    services = _service_boundaries()
    violations: list[str] = []

    for file_path, caller, target, line in _runtime_imports():
        owner = _owner(target, services)
        if owner is None or owner.is_public(target):
            continue
        caller_owner = _owner(caller, services)
        if caller_owner is not None and caller_owner.service_id == owner.service_id:
            continue
        violations.append(
            f"{file_path}:{line}: '{target}' is private to '{owner.service_id}'"
        )

    assert not violations, "\n".join(violations)


def test_resources_never_import_services() -> None:
    violations = [
        f"{file_path}:{line}: resource imports '{target}'"
        for file_path, caller, target, line in _runtime_imports()
        if caller.startswith("resources.") and target.startswith("services.")
    ]

    assert not violations, "\n".join(violations)


def test_state_services_never_import_action_services() -> None:
    services = _service_boundaries()
    violations: list[str] = []

    for file_path, caller, target, line in _runtime_imports():
        caller_owner = _owner(caller, services)
        target_owner = _owner(target, services)
        if caller_owner is None or target_owner is None:
            continue
        if caller_owner.system == "state" and target_owner.system == "action":
            violations.append(f"{file_path}:{line}: state imports '{target}'")

    assert not violations, "\n".join(violations)


def _service_boundaries() -> tuple[_ServiceBoundary, ...]:
    import_registered_component_modules(repo_root=REPO_ROOT)
    registry = get_registry()
    registry.assert_valid()
    return tuple(
        _ServiceBoundary(
            service_id=str(service.id),
            system=service.system,
            module_roots=tuple(sorted(str(root) for root in service.module_roots)),
            public_api_roots=tuple(
                sorted(str(root) for root in service.public_api_roots)
            ),
        )
        for service in registry.list_services()
    )


def _runtime_imports() -> list[tuple[Path, str, str, int]]:
    """Return ``(file, caller module, imported module, line)`` for runtime code."""
    found: list[tuple[Path, str, str, int]] = []
    for file_path in _runtime_files():
        caller = _module_name(file_path)
        tree = ast.parse(file_path.read_text(encoding="utf-8"))
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                found.extend(
                    (file_path, caller, alias.name, node.lineno) for alias in node.names
                )
            elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
                found.append((file_path, caller, node.module, node.lineno))
    return found


def _runtime_files() -> list[Path]:
    files: list[Path] = []
    for root_name in _RUNTIME_SCAN_ROOTS:
        root = REPO_ROOT / root_name
        if not root.exists():
            continue
        for file_path in sorted(root.rglob("*.py")):
            parts = file_path.relative_to(REPO_ROOT).parts
            if "tests" in parts or "__pycache__" in parts:
                continue
            files.append(file_path)
    return files


def _module_name(file_path: Path) -> str:
    rel = file_path.relative_to(REPO_ROOT)
    if rel.name == "__init__.py":
        return ".".join(rel.parent.parts)
    return ".".join(rel.with_suffix("").parts)


def _owner(
    module_name: str, services: tuple[_ServiceBoundary, ...]
) -> _ServiceBoundary | None:
    owners = [service for service in services if service.owns(module_name)]
    if not owners:
        return None
    return max(owners, key=lambda service: max(len(r) for r in service.module_roots))


def _is_equal_or_child(module_name: str, prefix: str) -> bool:
    return module_name == prefix or module_name.startswith(f"{prefix}.")
