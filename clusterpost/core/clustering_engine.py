"""
Clustering Engine - Orchestrates clustering post-processing.

Main entry point of the package. Runs one pipeline:

    dispatch -> (KCount post-processing) -> min-size filter -> order -> format

and returns either a label vector or a list of index sets.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from clusterpost.config.settings_loader import Settings, get_settings
from clusterpost.core.algorithm_spec import (
    AlgorithmCategory,
    AlgorithmRegistry,
    AlgorithmSpec,
    ClusterParams,
    InputType,
    OutputShape,
)
from clusterpost.core.builtin_algorithms import default_registry
from clusterpost.core.formatting import (
    cluster_list_to_vector,
    filter_min_size,
    order_by_size,
    sample_names,
    to_label_series,
)
from clusterpost.core.invoker import ClusterInvoker
from clusterpost.core.post_processing import KSelector, PostProcessConfig
from clusterpost.utils.advanced_logging import StageTimer, configure_logging, get_logger, run_context
from clusterpost.utils.error_handling import ConfigurationError

ORDER_BY_CHOICES = ("size", "best")
FORMAT_CHOICES = ("vector", "list")

ClusteringResults = Union[pd.Series, List[np.ndarray]]


@dataclass
class ClusteringOutput:
    """Results paired with the input they were computed from."""

    results: ClusteringResults
    input_matrix: Any


class ClusteringEngine:
    """
    Main clustering engine that orchestrates post-processing.

    Provides a unified interface for every registered algorithm regardless
    of its category or native output shape.
    """

    def __init__(
        self,
        registry: Optional[AlgorithmRegistry] = None,
        settings: Optional[Settings] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ):
        """
        Initialize clustering engine.

        Args:
            registry: Algorithms available by name (defaults to the built-ins)
            settings: Pipeline defaults (defaults to Settings())
            should_cancel: Cancellation hook polled during K searches
        """
        self.settings = settings or Settings()
        self.registry = registry or default_registry(self.settings)
        self.invoker = ClusterInvoker()
        self.k_selector = KSelector(
            invoker=self.invoker,
            settings=self.settings.post_processing,
            execution=self.settings.execution,
            should_cancel=should_cancel,
        )
        get_logger(__name__).debug("engine_initialized", algorithms=self.registry.names())

    def resolve(self, cluster_function: Union[str, AlgorithmSpec]) -> AlgorithmSpec:
        """Return the AlgorithmSpec for a name or pass a spec through."""
        if isinstance(cluster_function, AlgorithmSpec):
            return cluster_function
        return self.registry.get(cluster_function)

    def run(
        self,
        cluster_function: Union[str, AlgorithmSpec],
        input_matrix: Any,
        input_type: Union[InputType, str],
        cluster_args: Union[ClusterParams, Dict[str, Any], None] = None,
        min_size: Optional[int] = None,
        order_by: Optional[str] = None,
        output_format: Optional[str] = None,
        return_data: bool = False,
        warnings: Optional[bool] = None,
        **post_process_args: Any,
    ) -> Union[ClusteringResults, ClusteringOutput]:
        """
        Cluster samples and post-process the result.

        Args:
            cluster_function: Registered algorithm name or AlgorithmSpec
            input_matrix: Data matrix (features x samples) or N x N dissimilarity
            input_type: "X" or "diss"
            cluster_args: Algorithm parameters (alpha for Threshold, k for KCount)
            min_size: Clusters smaller than this are dropped, their samples
                become unclustered (-1)
            order_by: "size" numbers clusters by decreasing size; "best" keeps
                the mean-silhouette order of KCount post-processing
            output_format: "vector" for a label Series, "list" for index sets
            return_data: Also return input_matrix alongside the results
            warnings: Warn about post-processing args that do not apply
            **post_process_args: find_best_k, k_range, remove_sil, sil_cutoff,
                diss (camelCase spellings accepted)

        Returns:
            Label Series (-1 = unclustered), list of index arrays, or
            ClusteringOutput when return_data is set

        Raises:
            ConfigurationError: Invalid configuration
            ClusteringFailedError: Algorithm output is not a valid clustering
            InvariantViolation: Internal grouping bug
        """
        defaults = self.settings.post_processing
        min_size = defaults.min_size if min_size is None else min_size
        order_by = defaults.order_by if order_by is None else order_by
        output_format = defaults.format if output_format is None else output_format
        warn = self.settings.logging.warn_unused_args if warnings is None else warnings

        spec = self.resolve(cluster_function)
        input_type = InputType.parse(input_type)
        self._validate_options(min_size, order_by, output_format)
        n_samples = self._validate_input(input_matrix, input_type)

        config = PostProcessConfig.from_kwargs(spec, warn=warn, defaults=defaults, **post_process_args)
        if config.diss is not None and np.shape(config.diss) != (n_samples, n_samples):
            raise ConfigurationError(
                f"diss must be {n_samples} x {n_samples}, got {np.shape(config.diss)}",
                details={"shape": list(np.shape(config.diss))},
            )
        params = spec.build_params(cluster_args)

        with run_context():
            log = get_logger(__name__)
            with StageTimer("main_clustering", logger=log, algorithm=spec.name, n_samples=n_samples):
                if spec.category == AlgorithmCategory.KCOUNT and config.requested:
                    clusters = self.k_selector.post_process(
                        spec, input_matrix, input_type, params, n_samples, config, order_by
                    )
                else:
                    if spec.category == AlgorithmCategory.KCOUNT and params.k is None:
                        raise ConfigurationError(
                            f"Algorithm '{spec.name}' needs k unless find_best_k is set",
                            details={"algorithm": spec.name},
                        )
                    if order_by == "best":
                        # Only KCount post-processing defines a silhouette order
                        log.debug("order_by_best_not_applied", algorithm=spec.name)
                    clusters = self.invoker.invoke(
                        spec, input_matrix, input_type, params, output_shape=OutputShape.LIST
                    )

                clusters = filter_min_size(clusters, min_size)
                if clusters and order_by == "size":
                    clusters = order_by_size(clusters)

                log.info(
                    "clustering_complete",
                    algorithm=spec.name,
                    n_clusters=len(clusters),
                    unclustered=n_samples - sum(len(members) for members in clusters),
                )

        if output_format == "vector":
            results: ClusteringResults = to_label_series(
                cluster_list_to_vector(clusters, n_samples),
                sample_names(input_matrix, input_type),
            )
        else:
            results = clusters

        if return_data:
            return ClusteringOutput(results=results, input_matrix=input_matrix)
        return results

    @staticmethod
    def _validate_options(min_size: int, order_by: str, output_format: str) -> None:
        if min_size < 1:
            raise ConfigurationError(f"min_size must be >= 1, got {min_size}")
        if order_by not in ORDER_BY_CHOICES:
            raise ConfigurationError(
                f"order_by must be one of {list(ORDER_BY_CHOICES)}, got '{order_by}'"
            )
        if output_format not in FORMAT_CHOICES:
            raise ConfigurationError(
                f"output_format must be one of {list(FORMAT_CHOICES)}, got '{output_format}'"
            )

    @staticmethod
    def _validate_input(input_matrix: Any, input_type: InputType) -> int:
        """Return N after checking the matrix shape against input_type."""
        shape = np.shape(input_matrix)
        if len(shape) != 2:
            raise ConfigurationError(f"input_matrix must be 2-dimensional, got shape {shape}")
        if input_type == InputType.DISS and shape[0] != shape[1]:
            raise ConfigurationError(f"A dissimilarity must be square, got shape {shape}")
        return shape[1]


def main_clustering(
    cluster_function: Union[str, AlgorithmSpec],
    input_matrix: Any,
    input_type: Union[InputType, str],
    **kwargs: Any,
) -> Union[ClusteringResults, ClusteringOutput]:
    """Run ClusteringEngine.run with the globally configured settings and logging."""
    settings = get_settings()
    configure_logging(settings.logging, service_name=settings.service.name)
    engine = ClusteringEngine(settings=settings)
    return engine.run(cluster_function, input_matrix, input_type, **kwargs)
