"""Repository abstractions for database interactions."""

from .raw_data_repository import RawDataRepository
from .report_repository import ReportRepository
from .upsert import PersistenceError

__all__ = [
    "PersistenceError",
    "RawDataRepository",
    "ReportRepository",
]
