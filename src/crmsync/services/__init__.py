from .doctor import run_doctor_checks
from .exporter import export_summaries
from .session import authenticate_caller, open_session
from .sync import SyncService

__all__ = [
    "SyncService",
    "authenticate_caller",
    "open_session",
    "export_summaries",
    "run_doctor_checks",
]
