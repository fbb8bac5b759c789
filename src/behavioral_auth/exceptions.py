"""
Custom exception classes for the behavioral authentication system.

This module defines the error taxonomy of the biometric pipeline. Every
exception carries a human-readable message, a context dictionary and an
error code so failures can be logged as structured events.
"""

from typing import Optional, Dict, Any


class BehavioralAuthError(Exception):
    """
    Base exception class for all behavioral authentication errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    context : dict, optional
        Additional context information about the error.
    error_code : str, optional
        Unique error code for programmatic handling.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.context = context or {}
        self.error_code = error_code
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return a formatted string representation of the error."""
        parts = [self.message]

        if self.error_code:
            parts.append(f"[Error Code: {self.error_code}]")

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"[Context: {context_str}]")

        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the exception to a dictionary for structured logging.

        Returns
        -------
        dict
            Dictionary representation of the exception.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class ValidationError(BehavioralAuthError):
    """
    Exception raised for malformed, empty, or non-finite input.

    Validation errors are reported to the immediate caller and are never
    retried automatically.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        modality: Optional[str] = None,
        **kwargs,
    ) -> None:
        context = kwargs.get("context", {})
        if field:
            context["field"] = field
        if modality:
            context["modality"] = modality

        super().__init__(message, context, kwargs.get("error_code", "AUTH_001"))


class NotEnrolledError(BehavioralAuthError):
    """Exception raised when no usable profile exists for an identity."""

    def __init__(
        self, identity: str, context_scope: str, modality: str = "unknown"
    ) -> None:
        message = f"No {modality} profile enrolled for this identity"
        context = {
            "identity": identity,
            "context_scope": context_scope,
            "modality": modality,
        }
        super().__init__(message, context=context, error_code="AUTH_002")


class StoreError(BehavioralAuthError):
    """
    Exception raised for errors in the profile store.

    This includes integrity failures and failures of the persistence backend.
    """

    def __init__(self, message: str, record_id: Optional[str] = None, **kwargs) -> None:
        context = kwargs.get("context", {})
        if record_id:
            context["record_id"] = record_id

        super().__init__(message, context, kwargs.get("error_code"))


class IntegrityError(StoreError):
    """
    Exception raised when a stored record fails its integrity check.

    Callers outside the store never see this error directly: the
    verification engine reports it as ``NotEnrolledError`` so tampering and
    absence are indistinguishable.
    """

    def __init__(self, record_id: str, reason: str = "tag mismatch") -> None:
        super().__init__(
            f"Integrity check failed: {reason}",
            record_id=record_id,
            context={"reason": reason},
            error_code="STORE_001",
        )


class StorageError(StoreError):
    """Exception raised when the persistence backend fails."""

    def __init__(self, message: str, record_id: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, record_id=record_id, error_code="STORE_002")


class TrainingError(BehavioralAuthError):
    """
    Exception raised for errors during enrollment training.

    Training failures abort the current attempt without persisting any
    partial profile.
    """

    def __init__(
        self,
        message: str,
        modality: Optional[str] = None,
        training_stage: Optional[str] = None,
        **kwargs,
    ) -> None:
        context = kwargs.get("context", {})
        if modality:
            context["modality"] = modality
        if training_stage:
            context["training_stage"] = training_stage

        super().__init__(message, context, kwargs.get("error_code"))


class InsufficientSamplesError(TrainingError):
    """Exception raised when training is requested before enough samples exist."""

    def __init__(self, collected: int, required: int, modality: str = "keystroke") -> None:
        message = f"Need at least {required} samples for training, have {collected}"
        context = {"collected": collected, "required": required}
        super().__init__(
            message,
            modality=modality,
            training_stage="sample_collection",
            context=context,
            error_code="TRAIN_001",
        )


class ModelError(TrainingError):
    """Exception raised when model parameters become non-finite."""

    def __init__(self, message: str, epoch: Optional[int] = None, **kwargs) -> None:
        context = {"epoch": epoch} if epoch is not None else {}
        super().__init__(
            message,
            modality="keystroke",
            training_stage="optimization",
            context=context,
            error_code="TRAIN_002",
        )


class ConfigurationError(BehavioralAuthError):
    """
    Exception raised for configuration-related errors.

    This includes invalid configuration values and missing secret material.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[str] = None,
        **kwargs,
    ) -> None:
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key
        if config_value:
            context["config_value"] = config_value

        super().__init__(message, context, kwargs.get("error_code", "CONFIG_001"))
