"""FileMaker bridge -- session-cached, circuit-protected Data API integration.

Provides:
- SessionManager: cached Data API tokens in the shared state store
- CircuitBreaker: shared failure counter that gates calls when FM is down
- FileMakerClient: CRUD, find, portal pagination, metadata and containers
- Field maps and to_external/from_external conversion
- SyncReconciler: pull FM property records into the local store
- PushGateway: push submissions and communications to FM
- check_connection: bridge health report

Architecture: the local store is the working copy; FileMaker stays the
system of record. All cross-process state lives in the shared store.
"""

from src.portal.filemaker.circuit import CircuitBreaker
from src.portal.filemaker.client import FileMakerClient, is_attachment_url
from src.portal.filemaker.errors import (
    CircuitOpenError,
    ConfigurationMissing,
    ErrorCategory,
    FileMakerError,
)
from src.portal.filemaker.field_mapping import (
    BUYER_FIELD_MAP,
    COMMUNICATION_FIELD_MAP,
    PROPERTY_FIELD_MAP,
    SUBMISSION_FIELD_MAP,
    from_external,
    to_external,
)
from src.portal.filemaker.push import PushGateway
from src.portal.filemaker.repository import LocalRecordNotFound, SyncInProgress
from src.portal.filemaker.session import SessionManager
from src.portal.filemaker.status import check_connection
from src.portal.filemaker.sync import SyncReconciler

__all__ = [
    "SessionManager",
    "CircuitBreaker",
    "FileMakerClient",
    "is_attachment_url",
    "ErrorCategory",
    "FileMakerError",
    "ConfigurationMissing",
    "CircuitOpenError",
    "LocalRecordNotFound",
    "SyncInProgress",
    "PROPERTY_FIELD_MAP",
    "BUYER_FIELD_MAP",
    "SUBMISSION_FIELD_MAP",
    "COMMUNICATION_FIELD_MAP",
    "to_external",
    "from_external",
    "SyncReconciler",
    "PushGateway",
    "check_connection",
]
