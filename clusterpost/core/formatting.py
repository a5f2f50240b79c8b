"""
Conversions between cluster representations.

- Label vector: int array of length N, positive labels or -1 (unclustered)
- Partition list: list of sorted index arrays, pairwise disjoint, never
  holding an explicit unclustered set

Every function returns new arrays; inputs are never modified.
"""

import logging
from typing import Any, List, Optional

import numpy as np
import pandas as pd

from clusterpost.core.algorithm_spec import InputType
from clusterpost.utils.error_handling import ClusteringFailedError

logger = logging.getLogger(__name__)

UNCLUSTERED = -1


def cluster_vector_to_list(labels: np.ndarray) -> List[np.ndarray]:
    """
    Group sample positions by label value.

    Groups come out in ascending label order. Every label value, including
    -1 or any other negative code, forms an ordinary group.

    Args:
        labels: Label vector of length N

    Returns:
        Partition list
    """
    labels = np.asarray(labels)
    return [np.flatnonzero(labels == value) for value in np.unique(labels)]


def cluster_list_to_vector(partition: List[np.ndarray], n_samples: int) -> np.ndarray:
    """
    Label the set at position i with i + 1; samples in no set get -1.

    Args:
        partition: Partition list
        n_samples: N

    Returns:
        Label vector of length N
    """
    labels = np.full(n_samples, UNCLUSTERED, dtype=np.int64)
    for i, members in enumerate(partition):
        labels[np.asarray(members, dtype=np.int64)] = i + 1
    return labels


def validate_label_vector(labels: Any, n_samples: int, algorithm: str = "") -> np.ndarray:
    """Check that an algorithm returned one integer label per sample."""
    labels = np.asarray(labels)
    if labels.ndim != 1 or len(labels) != n_samples:
        raise ClusteringFailedError(
            f"Algorithm '{algorithm}' returned {labels.shape} labels for {n_samples} samples",
            details={"algorithm": algorithm, "shape": list(labels.shape)},
        )
    if labels.dtype.kind not in "iu":
        if labels.dtype.kind != "f" or not np.all(np.equal(np.mod(labels, 1), 0)):
            raise ClusteringFailedError(
                f"Algorithm '{algorithm}' returned non-integer labels",
                details={"algorithm": algorithm, "dtype": str(labels.dtype)},
            )
    return labels.astype(np.int64)


def validate_partition(partition: Any, n_samples: int, algorithm: str = "") -> List[np.ndarray]:
    """Check that index sets are disjoint, non-empty and inside 0..N-1."""
    seen = np.zeros(n_samples, dtype=bool)
    checked = []
    for members in partition:
        members = np.sort(np.asarray(members, dtype=np.int64).ravel())
        if len(members) == 0:
            raise ClusteringFailedError(
                f"Algorithm '{algorithm}' returned an empty cluster",
                details={"algorithm": algorithm},
            )
        if members[0] < 0 or members[-1] >= n_samples:
            raise ClusteringFailedError(
                f"Algorithm '{algorithm}' returned indices outside 0..{n_samples - 1}",
                details={"algorithm": algorithm},
            )
        if len(np.unique(members)) != len(members) or seen[members].any():
            raise ClusteringFailedError(
                f"Algorithm '{algorithm}' returned overlapping clusters",
                details={"algorithm": algorithm},
            )
        seen[members] = True
        checked.append(members)
    return checked


def filter_min_size(partition: List[np.ndarray], min_size: int) -> List[np.ndarray]:
    """Drop sets with fewer than min_size members, keeping arrival order."""
    kept = [members for members in partition if len(members) >= min_size]
    if len(kept) < len(partition):
        logger.debug(
            f"Dropped {len(partition) - len(kept)} clusters smaller than min_size={min_size}"
        )
    return kept


def order_by_size(partition: List[np.ndarray]) -> List[np.ndarray]:
    """Sort sets by decreasing size. Equal sizes keep their arrival order."""
    return sorted(partition, key=len, reverse=True)


def sample_names(input_matrix: Any, input_type: InputType) -> Optional[List[Any]]:
    """
    Sample names carried by the input.

    Row labels of a dissimilarity, column labels of a data matrix. Plain
    arrays carry none.
    """
    if not isinstance(input_matrix, pd.DataFrame):
        return None
    if input_type == InputType.DISS:
        return list(input_matrix.index)
    return list(input_matrix.columns)


def to_label_series(labels: np.ndarray, names: Optional[List[Any]] = None) -> pd.Series:
    """Wrap a label vector as a Series indexed by sample names when given."""
    return pd.Series(np.asarray(labels, dtype=np.int64), index=names, name="cluster")
