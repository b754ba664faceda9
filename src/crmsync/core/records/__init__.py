from .models import (
    PIPELINE_STAGES,
    SENTIMENTS,
    EmailAccount,
    EmailSummary,
    EntityMatch,
    SyncContext,
)
from .results import NOTHING_TO_DO_MESSAGE, AccountSyncResult, SyncResult

__all__ = [
    "PIPELINE_STAGES",
    "SENTIMENTS",
    "NOTHING_TO_DO_MESSAGE",
    "SyncContext",
    "EmailAccount",
    "EntityMatch",
    "EmailSummary",
    "AccountSyncResult",
    "SyncResult",
]
