from enum import StrEnum, auto

class JobType(StrEnum):
    LOCALE_FINANCIALS = auto()       # Currency/tax/fee/rounding per locale
    MULTI_LANGUAGE_CONTENT = auto()  # Translated product content per locale
    CURRENCY_REFRESH = auto()
    COMPLIANCE_UPDATE = auto()
    CATALOG_RECALCULATION = auto()

class JobStatus(StrEnum):
    PENDING = auto()     # Enqueued, waiting for the worker
    PROCESSING = auto()  # Dequeued, handler running
    COMPLETED = auto()
    FAILED = auto()
    CANCELLED = auto()

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

class WorkflowStatus(StrEnum):
    PENDING = auto()
    RUNNING = auto()      # Persisted workflow row accepted work
    IN_PROGRESS = auto()  # Catalog product axis while jobs are outstanding
    COMPLETED = auto()
    FAILED = auto()

class WorkflowType(StrEnum):
    LOCALE_FINANCIALS = auto()
    CONTENT_GENERATION = auto()
