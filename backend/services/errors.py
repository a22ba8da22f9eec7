"""
Error taxonomy for categorization, aggregation and forecasting.

Input and ownership errors block the request. Classifier and text-generation
failures are caught at the service boundary and downgraded to
"feature unavailable".

Author: Spending Tracker Team
"""

from typing import Optional


class SpendingTrackerError(Exception):
    """Base class for all domain errors."""


class NotFound(SpendingTrackerError):
    """Entity missing or not owned by the caller."""

    def __init__(self, entity: str, entity_id: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity} not found" if entity_id is None else f"{entity} '{entity_id}' not found"
        super().__init__(message)


class InvalidArgument(SpendingTrackerError, ValueError):
    """Caller input violates a contract."""


class InvalidCategory(InvalidArgument):
    """Category is not part of the catalog."""

    def __init__(self, category: str):
        self.category = category
        super().__init__(f"'{category}' is not a valid category")


class CatalogUnavailable(SpendingTrackerError):
    """The category catalog source returned nothing usable."""


# =============================================================================
# Classifier failures
# =============================================================================

class ClassifierFailure(SpendingTrackerError):
    """Base for every way a category prediction can fail."""

    kind = "unknown"


class ModelUnavailable(ClassifierFailure):
    """Model artifacts not loaded or the service cannot be reached."""

    kind = "model_unavailable"


class PreprocessingFailed(ClassifierFailure):
    """Feature extraction failed for this transaction."""

    kind = "preprocessing_failed"


class PredictionFailed(ClassifierFailure):
    """The model ran but produced no usable output."""

    kind = "prediction_failed"


class ClassifierTimeout(ClassifierFailure):
    kind = "timeout"


class TransactionNotFound(ClassifierFailure):
    """The classifier service does not know the transaction."""

    kind = "transaction_not_found"


ClassifierUnavailable = ModelUnavailable
ClassifierPredictionFailed = PredictionFailed

# Failures worth one retry; the rest are deterministic for a given input
RETRYABLE_CLASSIFIER_FAILURES = (ClassifierTimeout, ModelUnavailable)


class TextGenerationFailed(SpendingTrackerError):
    """The expenditure tip could not be produced."""
