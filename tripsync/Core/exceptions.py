# tripsync/Core/exceptions.py
"""
Exception hierarchy for the trip sync pipeline.

Propagation rules:
- ConfigurationError is the only error that reaches the caller of a sync
  or reconciliation run.
- Vendor and segmentation errors are caught per device by the orchestrator
  and recorded in that device's sync status.
- MalformedDataError and ReconciliationMiss are per-record: logged, counted,
  never fatal.
- DuplicateWriteConflict is swallowed by repositories (idempotent no-op).
"""

from typing import Optional


class TripSyncError(Exception):
    """Base exception for all tripsync errors."""


class ConfigurationError(TripSyncError):
    """Invalid or missing configuration for an invocation."""


# ==========================================================
# VENDOR API
# ==========================================================

class VendorError(TripSyncError):
    """Base class for anything that went wrong talking to the vendor."""

    def __init__(self, message: str, *, action: str = "") -> None:
        self.action = action
        super().__init__(message)


class TransientUpstreamError(VendorError):
    """Network failure, timeout, 5xx or unparseable body. Retried next tick."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        action: str = "",
    ) -> None:
        self.status_code = status_code
        super().__init__(message, action=action)


class VendorApiError(VendorError):
    """Vendor returned a non-zero status that is not otherwise mapped."""

    def __init__(self, message: str, *, code: Optional[int] = None, action: str = "") -> None:
        self.code = code
        super().__init__(message, action=action)


class VendorAuthError(VendorApiError):
    """Login rejected or token no longer accepted."""


class RateLimitError(VendorApiError):
    """Vendor asked us to slow down. Aborts the rest of the batch."""


# ==========================================================
# DATA / PIPELINE
# ==========================================================

class MalformedDataError(TripSyncError):
    """A single vendor record could not be mapped or normalized."""


class DuplicateWriteConflict(TripSyncError):
    """A write hit a uniqueness constraint; treated as already applied."""


class SegmentationError(TripSyncError):
    """Neither ignition nor speed is available for the whole window."""


class ReconciliationMiss(TripSyncError):
    """No valid fix near a trip endpoint within the search window."""

    def __init__(self, trip_id: int, endpoint: str) -> None:
        self.trip_id = trip_id
        self.endpoint = endpoint
        super().__init__(f"No valid position near {endpoint} of trip {trip_id}")
