"""Offline-first profile sync for the résumé editor."""

from .claim import ClaimState, NameClaim, ProfileNameError, normalise_profile_name
from .conflict import ConflictResolution, ConflictResolver, PendingConflict
from .engine import SyncEngine
from .identity import generate_device_token, get_or_create_device_token
from .local_store import FallbackLocalStore, LocalStore, LocalStoreError, MemoryLocalStore, SqliteLocalStore
from .manager import ResumeSyncManager, SyncConfig
from .remote import ProfileApiClient, RemoteProfileService
from .results import (
    Conflict,
    Found,
    Linked,
    NameTaken,
    NotFound,
    RateLimited,
    RemoteProfile,
    Success,
    SyncError,
    SyncState,
    TransientError,
    parse_fetch_response,
    parse_link_response,
    parse_push_response,
)
from .scheduler import SyncScheduler

__all__ = [
    "ClaimState",
    "Conflict",
    "ConflictResolution",
    "ConflictResolver",
    "FallbackLocalStore",
    "Found",
    "Linked",
    "LocalStore",
    "LocalStoreError",
    "MemoryLocalStore",
    "NameClaim",
    "NameTaken",
    "NotFound",
    "PendingConflict",
    "ProfileApiClient",
    "ProfileNameError",
    "RateLimited",
    "RemoteProfile",
    "RemoteProfileService",
    "ResumeSyncManager",
    "SqliteLocalStore",
    "Success",
    "SyncConfig",
    "SyncEngine",
    "SyncError",
    "SyncScheduler",
    "SyncState",
    "TransientError",
    "generate_device_token",
    "get_or_create_device_token",
    "normalise_profile_name",
    "parse_fetch_response",
    "parse_link_response",
    "parse_push_response",
]
