"""Error taxonomy for recurring-transaction processing."""


class RecurringProcessingError(Exception):
    """Base class for every failure raised while processing a recurring definition."""


class ValidationError(RecurringProcessingError):
    """The definition failed validation; ``reasons`` holds every violated rule."""

    def __init__(self, reasons: list[str]):
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons) or "Validation failed")


class StoreError(RecurringProcessingError):
    """A transaction / definition / settings store rejected a read or write."""


class DefinitionNotFound(StoreError):
    def __init__(self, recurring_id: str):
        self.recurring_id = recurring_id
        super().__init__("Recurring transaction not found")


class LockUnavailable(StoreError):
    """Another worker holds the per-definition lock."""


class ScheduleConflict(StoreError):
    """``next_due_date`` changed between read and write (lost compare-and-swap)."""


class NotDue(RecurringProcessingError):
    """The definition is not due (anymore) at the processing instant."""


class ConfigurationError(RecurringProcessingError):
    """Auto-processing settings are malformed; unattended runs must skip."""
