"""Component declaration for Retention Policy Engine."""

from __future__ import annotations

from packages.ledger_shared.manifest import (
    ComponentId,
    ModuleRoot,
    ServiceManifest,
    register_component,
)

SERVICE_COMPONENT_ID = ComponentId("service_retention_engine")

MANIFEST = register_component(
    ServiceManifest(
        id=SERVICE_COMPONENT_ID,
        layer=1,
        system="action",
        module_roots=frozenset({ModuleRoot("services.action.retention_engine")}),
        public_api_roots=frozenset(
            {
                ModuleRoot("services.action.retention_engine.service"),
                ModuleRoot("services.action.retention_engine.domain"),
            }
        ),
        depends_on=frozenset(
            {ComponentId("service_event_store"), ComponentId("substrate_postgres")}
        ),
    )
)
