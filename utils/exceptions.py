"""
Custom exception hierarchy for the resampled RFE pipeline.
"""

class RFEPipelineError(Exception):
    """Base exception for all pipeline errors."""
    pass

class InvalidConfigurationError(RFEPipelineError):
    """Configuration or resampling/schedule parameters are malformed."""
    pass

class DataValidationError(RFEPipelineError):
    """Data validation failed."""
    pass

class InsufficientFeaturesError(RFEPipelineError):
    """A schedule entry requests more predictors than are available."""
    pass

class TrainerError(RFEPipelineError):
    """Model fit failed for a given subset size."""
    pass

class ResampleFailedError(RFEPipelineError):
    """One or more outer resamples failed; their checkpoints were not written."""

    def __init__(self, failures: dict):
        self.failures = dict(sorted(failures.items()))
        details = "; ".join(f"resample {i}: {reason}" for i, reason in self.failures.items())
        super().__init__(f"{len(self.failures)} resample(s) failed: {details}")
