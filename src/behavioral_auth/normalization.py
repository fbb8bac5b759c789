"""
Feature vector normalization for the behavioral authentication system.

This module computes per-feature min-max statistics over a training corpus
and applies them to new samples. Statistics are derived once, from the
training corpus only, and reused unchanged at every verification.

It also aligns vectors to a fixed dimension with simple padding/truncation
so a sample captured under a different length still maps onto the stored
statistics.
"""

import numpy as np
import structlog

from .data_models import NormalizationParams
from .exceptions import ValidationError

# Initialize structured logger
logger = structlog.get_logger(__name__)


def align_vector(vector: np.ndarray, target_dim: int) -> np.ndarray:
    """
    Align a feature vector to the target dimension using padding/truncation.

    Extra dimensions beyond ``target_dim`` are dropped and missing ones are
    zero-filled.

    Parameters
    ----------
    vector : np.ndarray
        Input feature vector.
    target_dim : int
        Target dimension.

    Returns
    -------
    np.ndarray
        Vector of length ``target_dim``.

    Raises
    ------
    ValidationError
        If the vector is not one-dimensional or the target is not positive.

    Examples
    --------
    >>> align_vector(np.array([1.0, 2.0, 3.0]), 2)
    array([1., 2.])
    >>> align_vector(np.array([1.0]), 3)
    array([1., 0., 0.])
    """
    vector = np.asarray(vector, dtype=np.float64)

    if vector.ndim != 1:
        raise ValidationError(
            f"Input must be 1D array, got {vector.ndim}D",
            field="vector",
            context={"vector_shape": vector.shape, "target_dimension": target_dim},
        )

    if target_dim <= 0:
        raise ValidationError(
            f"Target dimension must be positive, got {target_dim}",
            field="target_dim",
        )

    if len(vector) >= target_dim:
        return vector[:target_dim].copy()

    aligned = np.zeros(target_dim, dtype=np.float64)
    aligned[: len(vector)] = vector
    return aligned


def fit_normalization(corpus: np.ndarray) -> NormalizationParams:
    """
    Compute per-feature min-max statistics of a training corpus.

    Parameters
    ----------
    corpus : np.ndarray
        Training samples, shape ``(n_samples, n_features)``.

    Returns
    -------
    NormalizationParams
        Per-feature minimum and maximum.

    Raises
    ------
    ValidationError
        If the corpus is empty, ragged or contains non-finite values.
    """
    corpus = np.asarray(corpus, dtype=np.float64)

    if corpus.ndim != 2 or corpus.shape[0] == 0 or corpus.shape[1] == 0:
        raise ValidationError(
            "Cannot normalize empty feature set",
            field="corpus",
            context={"corpus_shape": corpus.shape},
        )

    if not np.isfinite(corpus).all():
        raise ValidationError("Corpus contains non-finite values", field="corpus")

    params = NormalizationParams(minimum=corpus.min(axis=0), maximum=corpus.max(axis=0))

    logger.debug(
        "Normalization parameters fitted",
        n_samples=corpus.shape[0],
        n_features=corpus.shape[1],
        constant_features=int(np.sum(params.maximum == params.minimum)),
    )

    return params


def apply_normalization(sample: np.ndarray, params: NormalizationParams) -> np.ndarray:
    """
    Scale samples with stored min-max statistics.

    Features with zero range map to 0. Single samples are aligned to the
    stored dimension first; values outside the training range are not
    clipped, so anomalous samples stay anomalous.

    Parameters
    ----------
    sample : np.ndarray
        One sample ``(n_features,)`` or a corpus ``(n_samples, n_features)``.
    params : NormalizationParams
        Statistics frozen at training time.

    Returns
    -------
    np.ndarray
        Normalized sample(s).
    """
    sample = np.asarray(sample, dtype=np.float64)
    if sample.ndim == 1:
        sample = align_vector(sample, params.dimension)
    elif sample.shape[-1] != params.dimension:
        raise ValidationError(
            f"Corpus has {sample.shape[-1]} features, expected {params.dimension}",
            field="corpus",
        )

    value_range = params.maximum - params.minimum
    safe_range = np.where(value_range == 0, 1.0, value_range)
    normalized = (sample - params.minimum) / safe_range
    return np.where(value_range == 0, 0.0, normalized)
