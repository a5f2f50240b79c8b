"""
Pytest configuration and shared fixtures for cluster post-processing tests.

This module provides:
- Dissimilarity matrices with known cluster structure
- Fixed-output fake algorithms for deterministic pipeline tests
- Engine and settings fixtures
"""

import logging
import os
from typing import Dict, List, Sequence

import numpy as np
import pytest
import structlog

from clusterpost.config.settings_loader import ConfigManager, ExecutionSettings, Settings
from clusterpost.core.algorithm_spec import (
    AlgorithmCategory,
    AlgorithmSpec,
    OutputShape,
)
from clusterpost.core.clustering_engine import ClusteringEngine
from clusterpost.utils import advanced_logging

os.environ["TESTING"] = "true"


# =============================================================================
# Test Data Generators
# =============================================================================


def block_dissimilarity(blocks: Sequence[Sequence[int]], within: Sequence[float], between: float) -> np.ndarray:
    """Dissimilarity with constant distances inside each block and between blocks."""
    n = sum(len(b) for b in blocks)
    diss = np.full((n, n), between, dtype=np.float64)
    for members, distance in zip(blocks, within):
        idx = np.asarray(members)
        diss[np.ix_(idx, idx)] = distance
    np.fill_diagonal(diss, 0.0)
    return diss


@pytest.fixture
def triplet_diss():
    """N=6: {0,1,2} and {3,4,5}, distance 1 inside, 10 between."""
    return block_dissimilarity([[0, 1, 2], [3, 4, 5]], within=[1.0, 1.0], between=10.0)


@pytest.fixture
def uneven_triplet_diss():
    """N=6: loose {0,1,2} (distance 4), tight {3,4,5} (distance 1), 10 between."""
    return block_dissimilarity([[0, 1, 2], [3, 4, 5]], within=[4.0, 1.0], between=10.0)


@pytest.fixture
def outlier_diss():
    """N=7: two triplets plus sample 6 at distance 5.5 from everyone."""
    diss = block_dissimilarity([[0, 1, 2], [3, 4, 5]], within=[1.0, 1.0], between=10.0)
    out = np.full((7, 7), 5.5)
    out[:6, :6] = diss
    out[6, 6] = 0.0
    return out


@pytest.fixture
def two_blob_data():
    """Data matrix (2 features x 6 samples) with two well separated blobs."""
    return np.array(
        [
            [0.0, 0.1, 0.0, 10.0, 10.1, 10.0],
            [0.0, 0.0, 0.1, 10.0, 10.0, 10.1],
        ]
    )


# =============================================================================
# Fake Algorithms
# =============================================================================


def fixed_k_algorithm(
    labels_by_k: Dict[int, Sequence[int]],
    name: str = "fixed_k",
    calls: List[int] = None,
) -> AlgorithmSpec:
    """KCount algorithm returning a fixed label vector per k."""

    def fn(input_matrix, input_type, params, labels_only):
        if calls is not None:
            calls.append(params.k)
        return np.asarray(labels_by_k[params.k])

    return AlgorithmSpec(
        name=name,
        category=AlgorithmCategory.KCOUNT,
        output_shape=OutputShape.VECTOR,
        fn=fn,
    )


def fixed_list_algorithm(
    partition: Sequence[Sequence[int]],
    category: AlgorithmCategory = AlgorithmCategory.THRESHOLD,
    name: str = "fixed_list",
) -> AlgorithmSpec:
    """Algorithm returning the same index sets on every call."""

    def fn(input_matrix, input_type, params, labels_only):
        return [np.asarray(members) for members in partition]

    return AlgorithmSpec(name=name, category=category, output_shape=OutputShape.LIST, fn=fn)


def fixed_vector_algorithm(
    labels: Sequence[int],
    category: AlgorithmCategory = AlgorithmCategory.THRESHOLD,
    name: str = "fixed_vector",
) -> AlgorithmSpec:
    """Algorithm returning the same label vector on every call."""

    def fn(input_matrix, input_type, params, labels_only):
        return np.asarray(labels)

    return AlgorithmSpec(name=name, category=category, output_shape=OutputShape.VECTOR, fn=fn)


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def engine(settings):
    return ClusteringEngine(settings=settings)


@pytest.fixture
def parallel_engine():
    return ClusteringEngine(settings=Settings(execution=ExecutionSettings(max_workers=4)))


@pytest.fixture(autouse=True)
def reset_global_state():
    """Keep cached settings and logging configuration test-local."""
    root = logging.getLogger()
    root_level = root.level
    ConfigManager._settings = None
    yield
    ConfigManager._settings = None
    if advanced_logging._file_handler is not None:
        root.removeHandler(advanced_logging._file_handler)
        advanced_logging._file_handler.close()
        advanced_logging._file_handler = None
    advanced_logging._applied = None
    root.setLevel(root_level)
    structlog.reset_defaults()


@pytest.fixture
def make_k_algorithm():
    return fixed_k_algorithm


@pytest.fixture
def make_list_algorithm():
    return fixed_list_algorithm


@pytest.fixture
def make_vector_algorithm():
    return fixed_vector_algorithm


@pytest.fixture
def make_block_diss():
    return block_dissimilarity
