"""
Core clustering post-processing module.

Exports:
- ClusteringEngine: Main orchestration class
- main_clustering: One-call pipeline with global settings
- AlgorithmSpec / AlgorithmRegistry: Algorithm description and lookup
- ClusterInvoker: Uniform algorithm call
- KSelector / PostProcessConfig: KCount post-processing
"""

from clusterpost.core.algorithm_spec import (
    AlgorithmCategory,
    AlgorithmRegistry,
    AlgorithmSpec,
    InputType,
    KParams,
    OutputShape,
    ThresholdParams,
)
from clusterpost.core.builtin_algorithms import default_registry
from clusterpost.core.clustering_engine import ClusteringEngine, ClusteringOutput, main_clustering
from clusterpost.core.invoker import ClusterInvoker
from clusterpost.core.post_processing import (
    KSelectionResult,
    KSelector,
    PostProcessConfig,
    get_post_processing_args,
)

__all__ = [
    "AlgorithmCategory",
    "AlgorithmRegistry",
    "AlgorithmSpec",
    "ClusterInvoker",
    "ClusteringEngine",
    "ClusteringOutput",
    "InputType",
    "KParams",
    "KSelectionResult",
    "KSelector",
    "OutputShape",
    "PostProcessConfig",
    "ThresholdParams",
    "default_registry",
    "get_post_processing_args",
    "main_clustering",
]
