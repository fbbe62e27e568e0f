"""Component declaration for Event Store Service."""

from __future__ import annotations

from packages.ledger_shared.manifest import (
    ComponentId,
    ModuleRoot,
    ServiceManifest,
    register_component,
)

SERVICE_COMPONENT_ID = ComponentId("service_event_store")

MANIFEST = register_component(
    ServiceManifest(
        id=SERVICE_COMPONENT_ID,
        layer=1,
        system="state",
        module_roots=frozenset({ModuleRoot("services.state.event_store")}),
        public_api_roots=frozenset(
            {
                ModuleRoot("services.state.event_store.service"),
                ModuleRoot("services.state.event_store.domain"),
            }
        ),
        depends_on=frozenset(
            {ComponentId("substrate_postgres"), ComponentId("adapter_kms")}
        ),
    )
)
