"""TariffSync — Error Taxonomy."""


class TariffSyncError(Exception):
    """Base class for all TariffSync errors."""


class SourceAPIError(TariffSyncError):
    """Raised when an upstream source returns an error or is unreachable.

    Transient by nature: the retry queue retries the whole unit of work.
    """

    def __init__(self, source: str, message: str, status_code: int = 0):
        self.source = source
        self.status_code = status_code
        super().__init__(f"[{source}] {message}")


class ValidationError(TariffSyncError):
    """Raised when an upstream payload does not match its expected shape."""

    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"[{source}] invalid payload: {detail}")


class SyncInProgressError(TariffSyncError):
    """Raised when a run is requested for a sync type that holds a live lease."""

    def __init__(self, sync_type: str, run_id: int | None = None):
        self.sync_type = sync_type
        self.run_id = run_id
        held_by = f" (run {run_id})" if run_id is not None else ""
        super().__init__(f"A {sync_type} sync is already running{held_by}")
