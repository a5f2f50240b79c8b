"""
Built-in Clustering Algorithms.

Wrappers around scikit-learn clustering:

- hierarchical01: Threshold algorithm. Cuts an agglomerative tree at
  distance alpha, so with complete linkage every pair inside a cluster is
  closer than alpha.
- hierarchicalK: KCount algorithm. Cuts an agglomerative tree into exactly
  k clusters. A data matrix (features x samples) is turned into euclidean
  distances between its columns first.
- kmeansK: KCount algorithm. K-Means on the columns of a data matrix.

Cluster labels are numbered by first appearance, so results do not depend
on scikit-learn's internal numbering.
"""

import functools
import logging
from typing import Any, List, Optional

import numpy as np
from sklearn.cluster import AgglomerativeClustering, KMeans
from sklearn.metrics import pairwise_distances

from clusterpost.config.settings_loader import KMeansSettings, Settings
from clusterpost.core.algorithm_spec import (
    AlgorithmCategory,
    AlgorithmRegistry,
    AlgorithmSpec,
    InputType,
    KParams,
    OutputShape,
    ThresholdParams,
)
from clusterpost.utils.error_handling import ConfigurationError

logger = logging.getLogger(__name__)


def _as_dissimilarity(input_matrix: Any, input_type: InputType) -> np.ndarray:
    matrix = np.asarray(input_matrix, dtype=np.float64)
    if input_type == InputType.DISS:
        return matrix
    return pairwise_distances(matrix.T, metric="euclidean")


def number_by_first_appearance(labels: np.ndarray) -> np.ndarray:
    """
    Renumber cluster labels 1..k in order of each cluster's first sample.

    The cluster holding sample 0 becomes 1, the next new cluster 2, and so on.
    """
    labels = np.asarray(labels)
    _, first, inverse = np.unique(labels, return_index=True, return_inverse=True)
    rank = np.empty(len(first), dtype=np.int64)
    rank[np.argsort(first)] = np.arange(1, len(first) + 1)
    return rank[inverse.reshape(-1)]


def hierarchical01(
    input_matrix: Any,
    input_type: InputType,
    params: ThresholdParams,
    labels_only: bool = True,
    default_linkage: str = "complete",
) -> List[np.ndarray]:
    """
    Threshold clustering by cutting an agglomerative tree at alpha.

    Args:
        input_matrix: N x N dissimilarity
        input_type: Must be InputType.DISS
        params: alpha plus optional linkage
        labels_only: Only assignments are produced; accepted for the interface

    Returns:
        Index sets in order of decreasing size
    """
    diss = _as_dissimilarity(input_matrix, input_type)
    n_samples = diss.shape[0]
    if n_samples < 2:
        return [np.arange(n_samples)]

    linkage = (params.model_extra or {}).get("linkage", default_linkage)
    clusterer = AgglomerativeClustering(
        n_clusters=None,
        distance_threshold=params.alpha,
        metric="precomputed",
        linkage=linkage,
        compute_full_tree=True,
    )
    labels = number_by_first_appearance(clusterer.fit_predict(diss))

    clusters = [np.flatnonzero(labels == label) for label in range(1, labels.max() + 1)]
    logger.debug(f"hierarchical01 found {len(clusters)} clusters at alpha={params.alpha}")

    return sorted(clusters, key=len, reverse=True)


def hierarchicalK(
    input_matrix: Any,
    input_type: InputType,
    params: KParams,
    labels_only: bool = True,
    default_linkage: str = "average",
) -> np.ndarray:
    """
    Cut an agglomerative tree into k clusters.

    Args:
        input_matrix: N x N dissimilarity or features x N data matrix
        input_type: InputType.DISS or InputType.DATA
        params: k plus optional linkage
        labels_only: Only assignments are produced; accepted for the interface

    Returns:
        Labels 1..k, one per sample
    """
    if params.k is None:
        raise ConfigurationError("hierarchicalK requires k")

    diss = _as_dissimilarity(input_matrix, input_type)
    linkage = (params.model_extra or {}).get("linkage", default_linkage)
    clusterer = AgglomerativeClustering(
        n_clusters=params.k,
        metric="precomputed",
        linkage=linkage,
    )
    return number_by_first_appearance(clusterer.fit_predict(diss))


def kmeansK(
    input_matrix: Any,
    input_type: InputType,
    params: KParams,
    labels_only: bool = True,
    defaults: Optional[KMeansSettings] = None,
) -> np.ndarray:
    """
    K-Means on the samples (columns) of a data matrix.

    Works on raw data only. Pair it with a diss override when silhouette
    post-processing is needed.

    Args:
        input_matrix: features x N data matrix
        input_type: Must be InputType.DATA
        params: k plus optional n_init, max_iter, random_state
        labels_only: Centroids are not returned; accepted for the interface

    Returns:
        Labels 1..k, one per sample
    """
    if params.k is None:
        raise ConfigurationError("kmeansK requires k")
    if input_type != InputType.DATA:
        raise ConfigurationError(
            "kmeansK clusters a data matrix; use input_type='X'",
            details={"input_type": input_type.value},
        )

    samples = np.asarray(input_matrix, dtype=np.float64).T
    if params.k > len(samples):
        raise ConfigurationError(
            f"kmeansK cannot form {params.k} clusters from {len(samples)} samples",
            details={"k": params.k, "n_samples": len(samples)},
        )

    defaults = defaults or KMeansSettings()
    extra = params.model_extra or {}
    clusterer = KMeans(
        n_clusters=params.k,
        n_init=extra.get("n_init", defaults.n_init),
        max_iter=extra.get("max_iter", defaults.max_iter),
        random_state=extra.get("random_state", defaults.random_state),
    )
    labels = clusterer.fit_predict(samples)
    logger.debug(f"kmeansK converged in {clusterer.n_iter_} iterations, inertia={clusterer.inertia_:.4f}")

    return number_by_first_appearance(labels)


def default_registry(settings: Optional[Settings] = None) -> AlgorithmRegistry:
    """Registry holding the built-in algorithms."""
    settings = settings or Settings()
    algorithms = settings.algorithms

    return AlgorithmRegistry(
        [
            AlgorithmSpec(
                name="hierarchical01",
                category=AlgorithmCategory.THRESHOLD,
                output_shape=OutputShape.LIST,
                fn=functools.partial(
                    hierarchical01, default_linkage=algorithms.hierarchical01.linkage
                ),
            ),
            AlgorithmSpec(
                name="hierarchicalK",
                category=AlgorithmCategory.KCOUNT,
                output_shape=OutputShape.VECTOR,
                fn=functools.partial(
                    hierarchicalK, default_linkage=algorithms.hierarchicalK.linkage
                ),
            ),
            AlgorithmSpec(
                name="kmeansK",
                category=AlgorithmCategory.KCOUNT,
                output_shape=OutputShape.VECTOR,
                fn=functools.partial(kmeansK, defaults=algorithms.kmeansK),
            ),
        ]
    )
