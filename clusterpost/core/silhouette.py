"""
Silhouette widths against a precomputed dissimilarity.
"""

import logging
from typing import Any

import numpy as np
from sklearn.metrics import silhouette_samples

logger = logging.getLogger(__name__)


def silhouette_widths(labels: np.ndarray, diss: Any) -> np.ndarray:
    """
    Per-sample silhouette width in [-1, 1].

    Every label value, -1 included, is treated as a cluster. Singleton
    clusters score 0. A labelling with a single cluster, or with every
    sample in its own cluster, has no defined separation and scores 0
    everywhere.

    Args:
        labels: Label vector of length N
        diss: N x N symmetric dissimilarity with zero diagonal

    Returns:
        Array of N silhouette widths
    """
    labels = np.asarray(labels)
    n_labels = len(np.unique(labels))
    if n_labels < 2 or n_labels >= len(labels):
        logger.debug(
            f"Silhouette undefined for {n_labels} clusters over {len(labels)} samples, using 0"
        )
        return np.zeros(len(labels), dtype=np.float64)

    return silhouette_samples(np.asarray(diss, dtype=np.float64), labels, metric="precomputed")


def mean_silhouette_width(labels: np.ndarray, diss: Any) -> float:
    """Mean silhouette width over all samples."""
    return float(np.mean(silhouette_widths(labels, diss)))
