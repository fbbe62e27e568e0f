"""Key-management collaborator adapter resource."""

from resources.adapters.kms.client import (
    HttpKeyManagementClient,
    KeyManagementClient,
    SignatureResult,
)
from resources.adapters.kms.component import MANIFEST, RESOURCE_COMPONENT_ID
from resources.adapters.kms.config import KeyManagementSettings, resolve_kms_settings
from resources.adapters.kms.errors import KeyManagementError

__all__ = [
    "MANIFEST",
    "RESOURCE_COMPONENT_ID",
    "HttpKeyManagementClient",
    "KeyManagementClient",
    "KeyManagementError",
    "KeyManagementSettings",
    "SignatureResult",
    "resolve_kms_settings",
]
