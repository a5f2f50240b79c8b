"""
Post-processing for KCount algorithms.

- Candidate K search scored by mean silhouette width
- Removal of samples whose silhouette width is at or below a cutoff
- Ordering of clusters by mean silhouette width

Candidate evaluations are independent, so they may run on a thread pool.
Results are always reduced in search order: among equal mean silhouette
widths the candidate tried first wins.
"""

import concurrent.futures
import contextvars
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from clusterpost.config.settings_loader import ExecutionSettings, PostProcessingSettings
from clusterpost.core.algorithm_spec import (
    AlgorithmCategory,
    AlgorithmSpec,
    InputType,
    KParams,
    OutputShape,
)
from clusterpost.core.formatting import UNCLUSTERED, cluster_vector_to_list
from clusterpost.core.invoker import ClusterInvoker
from clusterpost.core.silhouette import silhouette_widths
from clusterpost.utils.advanced_logging import KSearchProgress, StageTimer, get_logger
from clusterpost.utils.error_handling import (
    ConfigurationError,
    InvariantViolation,
    SearchCancelledError,
    SearchTimeoutError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Post-processing Arguments
# =============================================================================

K_POST_PROCESSING_ARGS = ("find_best_k", "k_range", "remove_sil", "sil_cutoff", "diss")

ARG_ALIASES = {
    "findBestK": "find_best_k",
    "kRange": "k_range",
    "removeSil": "remove_sil",
    "silCutoff": "sil_cutoff",
}


def get_post_processing_args(spec: AlgorithmSpec) -> Tuple[str, ...]:
    """Post-processing arguments that apply to an algorithm's category."""
    if spec.category == AlgorithmCategory.KCOUNT:
        return K_POST_PROCESSING_ARGS
    return ()


class PostProcessConfig(BaseModel):
    """Post-processing options for KCount algorithms."""

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="ignore",
    )

    find_best_k: bool = Field(default=False, alias="findBestK")
    k_range: Optional[List[int]] = Field(default=None, alias="kRange")
    remove_sil: bool = Field(default=False, alias="removeSil")
    sil_cutoff: float = Field(default=0.0, ge=-1.0, le=1.0, alias="silCutoff")
    diss: Optional[Any] = None

    @field_validator("k_range", mode="before")
    @classmethod
    def unique_in_order(cls, v: Any) -> Any:
        if v is None:
            return v
        if isinstance(v, (int, float, np.integer, np.floating)):
            v = [v]
        ks = []
        for k in v:
            if isinstance(k, bool) or not isinstance(k, (int, float, np.integer, np.floating)):
                raise ValueError(f"k_range values must be integers, got {k!r}")
            if not float(k).is_integer():
                raise ValueError(f"k_range values must be integers, got {k!r}")
            ks.append(int(k))
        return list(dict.fromkeys(ks))

    @property
    def requested(self) -> bool:
        """Whether any K post-processing was asked for."""
        return self.find_best_k or self.remove_sil

    @classmethod
    def from_kwargs(
        cls,
        spec: AlgorithmSpec,
        warn: bool = True,
        defaults: Optional[PostProcessingSettings] = None,
        **kwargs: Any,
    ) -> "PostProcessConfig":
        """
        Build a config from loose keyword arguments.

        Keys that do not apply to the algorithm's category are dropped, with a
        warning when warn is set. Never raises for unknown keys.

        Raises:
            ConfigurationError: If a recognized value is invalid
        """
        allowed = get_post_processing_args(spec)
        values: Dict[str, Any] = {}
        unused = []
        for key, value in kwargs.items():
            name = ARG_ALIASES.get(key, key)
            if name in allowed:
                values[name] = value
            else:
                unused.append(key)

        if unused and warn:
            get_logger(__name__).warning(
                "unused_post_processing_args",
                algorithm=spec.name,
                category=spec.category.value,
                ignored=unused,
            )

        if defaults is not None:
            values.setdefault("sil_cutoff", defaults.sil_cutoff)

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid post-processing arguments: {e}",
                details={"algorithm": spec.name},
            )


# =============================================================================
# K Selection
# =============================================================================


@dataclass
class KSelectionResult:
    """Outcome of a candidate K search."""

    k: int
    labels: np.ndarray
    widths: np.ndarray
    scores: Dict[int, float] = field(default_factory=dict)

    @property
    def mean_width(self) -> float:
        return self.scores[self.k]


class KSelector:
    """
    Chooses K for a KCount algorithm and post-processes its clustering.

    Optional hooks:
    - should_cancel: called before each candidate; True aborts the search
    - execution.timeout_seconds: wall-clock budget for the whole search
    """

    def __init__(
        self,
        invoker: Optional[ClusterInvoker] = None,
        settings: Optional[PostProcessingSettings] = None,
        execution: Optional[ExecutionSettings] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ):
        self.invoker = invoker or ClusterInvoker()
        self.settings = settings or PostProcessingSettings()
        self.execution = execution or ExecutionSettings()
        self.should_cancel = should_cancel

    def candidate_ks(
        self,
        k: Optional[int],
        n_samples: int,
        config: PostProcessConfig,
    ) -> List[int]:
        """
        Candidate K values in search order.

        Raises:
            ConfigurationError: If k is missing without find_best_k, or no
                candidate lies in [2, n_samples)
        """
        if config.find_best_k:
            if config.k_range is not None:
                ks = list(config.k_range)
            elif k is not None:
                ks = list(range(k - self.settings.k_below, k + self.settings.k_above + 1))
            else:
                ks = list(range(self.settings.default_k_min, self.settings.default_k_max + 1))
        else:
            if k is None:
                raise ConfigurationError("If find_best_k is False, k must be provided")
            ks = [k]

        ks = [candidate for candidate in ks if candidate >= 2]
        if not ks:
            raise ConfigurationError(
                "Undefined values for k_range; must be greater than or equal to 2",
                details={"k": k, "k_range": config.k_range},
            )

        ks = [candidate for candidate in ks if candidate < n_samples]
        if not ks:
            raise ConfigurationError(
                f"No candidate k is smaller than the number of samples ({n_samples})",
                details={"k": k, "k_range": config.k_range, "n_samples": n_samples},
            )

        return list(dict.fromkeys(ks))

    def select_k(
        self,
        spec: AlgorithmSpec,
        input_matrix: Any,
        input_type: Union[InputType, str],
        params: Union[KParams, Dict[str, Any], None],
        n_samples: int,
        config: PostProcessConfig,
    ) -> KSelectionResult:
        """
        Cluster at every candidate K and keep the best mean silhouette width.

        Args:
            spec: KCount algorithm
            input_matrix: Data matrix or dissimilarity
            input_type: InputType of input_matrix
            params: Base algorithm parameters, k optional
            n_samples: N
            config: Post-processing options

        Returns:
            KSelectionResult for the winning candidate
        """
        input_type = InputType.parse(input_type)
        if spec.category != AlgorithmCategory.KCOUNT:
            raise ConfigurationError(
                f"K post-processing needs a KCount algorithm, '{spec.name}' is {spec.category.value}",
                details={"algorithm": spec.name},
            )

        params = spec.build_params(params)
        ks = self.candidate_ks(params.k, n_samples, config)

        diss = config.diss
        if diss is None:
            if input_type != InputType.DISS:
                raise ConfigurationError(
                    "Silhouette post-processing needs a dissimilarity: pass diss or use input_type='diss'",
                    details={"algorithm": spec.name, "input_type": input_type.value},
                )
            diss = input_matrix

        log = get_logger(__name__)
        progress = KSearchProgress(spec.name, ks, logger=log)
        with StageTimer("k_search", logger=log, algorithm=spec.name, candidates=len(ks)):
            evaluations = self._evaluate_all(spec, input_matrix, input_type, params, ks, diss, progress)

        scores = dict(progress.scores)
        # np.argmax returns the first maximum, i.e. the earliest candidate
        best = int(np.argmax([scores[k] for k in ks]))
        labels, widths = evaluations[best]
        progress.selected(ks[best])

        return KSelectionResult(k=ks[best], labels=labels, widths=widths, scores=scores)

    def post_process(
        self,
        spec: AlgorithmSpec,
        input_matrix: Any,
        input_type: Union[InputType, str],
        params: Union[KParams, Dict[str, Any], None],
        n_samples: int,
        config: PostProcessConfig,
        order_by: str = "size",
    ) -> List[np.ndarray]:
        """
        Select K, optionally unassign poorly fit samples, and group.

        Args:
            order_by: "best" sorts groups by decreasing mean silhouette width;
                "size" keeps ascending label order for the caller to sort

        Returns:
            Partition list without the unclustered group
        """
        result = self.select_k(spec, input_matrix, input_type, params, n_samples, config)
        labels, widths = result.labels, result.widths

        if config.remove_sil:
            keep = widths > config.sil_cutoff
            labels = np.where(keep, labels, UNCLUSTERED)
            widths = np.where(keep, widths, -np.inf)
            logger.debug(
                f"Unassigned {int((~keep).sum())} samples with silhouette <= {config.sil_cutoff}"
            )

        groups = cluster_vector_to_list(labels)

        if order_by == "best":
            groups = order_by_silhouette(groups, widths)

        if config.remove_sil:
            groups = drop_unclustered_group(groups, labels)

        return groups

    def _evaluate(
        self,
        spec: AlgorithmSpec,
        input_matrix: Any,
        input_type: InputType,
        params: KParams,
        k: int,
        diss: Any,
    ) -> Tuple[np.ndarray, np.ndarray]:
        if self.should_cancel is not None and self.should_cancel():
            raise SearchCancelledError(
                f"K search for '{spec.name}' cancelled before k={k}",
                details={"algorithm": spec.name, "k": k},
            )

        labels = self.invoker.invoke(
            spec, input_matrix, input_type, params.with_k(k), output_shape=OutputShape.VECTOR
        )
        return labels, silhouette_widths(labels, diss)

    def _evaluate_all(
        self,
        spec: AlgorithmSpec,
        input_matrix: Any,
        input_type: InputType,
        params: KParams,
        ks: Sequence[int],
        diss: Any,
        progress: KSearchProgress,
    ) -> List[Tuple[np.ndarray, np.ndarray]]:
        """Evaluate every candidate, returning results in search order."""
        timeout = self.execution.timeout_seconds
        deadline = None if timeout is None else time.monotonic() + timeout

        def timed_out(k: int) -> SearchTimeoutError:
            return SearchTimeoutError(
                f"K search for '{spec.name}' exceeded {timeout}s before k={k} finished",
                details={"algorithm": spec.name, "k": k, "timeout_seconds": timeout},
            )

        results = []
        if self.execution.max_workers <= 1 or len(ks) == 1:
            for k in ks:
                if deadline is not None and time.monotonic() > deadline:
                    raise timed_out(k)
                labels, widths = self._evaluate(spec, input_matrix, input_type, params, k, diss)
                progress.scored(k, float(np.mean(widths)))
                results.append((labels, widths))
            return results

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=self.execution.max_workers)
        try:
            # Each worker runs in a copy of the caller's context so its events keep the run ID
            futures = [
                executor.submit(
                    contextvars.copy_context().run,
                    self._evaluate, spec, input_matrix, input_type, params, k, diss,
                )
                for k in ks
            ]
            for k, future in zip(ks, futures):
                remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
                try:
                    labels, widths = future.result(timeout=remaining)
                except concurrent.futures.TimeoutError:
                    raise timed_out(k) from None
                progress.scored(k, float(np.mean(widths)))
                results.append((labels, widths))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return results


def order_by_silhouette(groups: List[np.ndarray], widths: np.ndarray) -> List[np.ndarray]:
    """
    Sort groups by decreasing mean silhouette width of their members.

    NaN widths are left out of each mean. Ties keep their current order.
    """
    means = []
    for members in groups:
        member_widths = widths[members]
        finite_or_inf = member_widths[~np.isnan(member_widths)]
        means.append(float(np.mean(finite_or_inf)) if len(finite_or_inf) else -np.inf)

    order = sorted(range(len(groups)), key=lambda i: -means[i])
    return [groups[i] for i in order]


def drop_unclustered_group(groups: List[np.ndarray], labels: np.ndarray) -> List[np.ndarray]:
    """
    Remove the group made of unclustered samples.

    Raises:
        InvariantViolation: If more than one such group exists
    """
    unclustered = [i for i, members in enumerate(groups) if np.all(labels[members] == UNCLUSTERED)]
    if len(unclustered) > 1:
        raise InvariantViolation(
            f"Found {len(unclustered)} unclustered groups, expected at most one",
            details={"group_positions": unclustered},
        )
    return [members for i, members in enumerate(groups) if i not in unclustered]
