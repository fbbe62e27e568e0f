"""Component declaration for Subject Rights Service."""

from __future__ import annotations

from packages.ledger_shared.manifest import (
    ComponentId,
    ModuleRoot,
    ServiceManifest,
    register_component,
)

SERVICE_COMPONENT_ID = ComponentId("service_subject_rights")

MANIFEST = register_component(
    ServiceManifest(
        id=SERVICE_COMPONENT_ID,
        layer=1,
        system="action",
        module_roots=frozenset({ModuleRoot("services.action.subject_rights")}),
        public_api_roots=frozenset(
            {
                ModuleRoot("services.action.subject_rights.service"),
                ModuleRoot("services.action.subject_rights.domain"),
            }
        ),
        depends_on=frozenset(
            {ComponentId("service_event_store"), ComponentId("adapter_kms")}
        ),
    )
)
