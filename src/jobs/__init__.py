"""Posted jobs as seen by the alert engine.

Components:
- Job / JobSuitability: Dataclasses mapping to the jobs table
- JobRepository: Storage for jobs received from the creation hook
- VALID_*: Frozensets for runtime validation of enumerated fields
"""

from src.jobs.repository import JobRepository
from src.jobs.schemas import (
    VALID_DATE_TYPES,
    VALID_DIFFICULTIES,
    VALID_PAYMENT_KINDS,
    VALID_PAYMENT_METHODS,
    Job,
    JobSuitability,
)

__all__ = [
    "Job",
    "JobRepository",
    "JobSuitability",
    "VALID_DATE_TYPES",
    "VALID_DIFFICULTIES",
    "VALID_PAYMENT_KINDS",
    "VALID_PAYMENT_METHODS",
]
