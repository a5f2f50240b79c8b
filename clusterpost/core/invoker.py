"""
Cluster Invoker - calls an algorithm function with the uniform contract.
"""

import logging
from typing import Any, Dict, List, Optional, Union

import numpy as np

from clusterpost.core.algorithm_spec import (
    AlgorithmSpec,
    ClusterParams,
    InputType,
    OutputShape,
)
from clusterpost.core.formatting import (
    cluster_list_to_vector,
    cluster_vector_to_list,
    validate_label_vector,
    validate_partition,
)
from clusterpost.utils.error_handling import ConfigurationError

logger = logging.getLogger(__name__)


class ClusterInvoker:
    """
    Calls AlgorithmSpec functions.

    Pure call: no retries and no state kept between calls.
    """

    def invoke(
        self,
        spec: AlgorithmSpec,
        input_matrix: Any,
        input_type: Union[InputType, str],
        params: Union[ClusterParams, Dict[str, Any], None],
        output_shape: Optional[OutputShape] = None,
    ) -> Union[np.ndarray, List[np.ndarray]]:
        """
        Run one clustering.

        Args:
            spec: Algorithm to call
            input_matrix: Data matrix (features x samples) or dissimilarity
            input_type: InputType of input_matrix
            params: Algorithm parameters (record or mapping)
            output_shape: Convert the result to this shape; None keeps the
                algorithm's native shape

        Returns:
            Label vector or partition list

        Raises:
            ConfigurationError: Threshold algorithm without a dissimilarity
            ClusteringFailedError: Algorithm output is not a valid clustering
        """
        input_type = InputType.parse(input_type)
        if spec.requires_dissimilarity and input_type != InputType.DISS:
            raise ConfigurationError(
                f"Algorithm '{spec.name}' of type {spec.category.value} requires a "
                f"dissimilarity input, got input_type='{input_type.value}'",
                details={"algorithm": spec.name, "input_type": input_type.value},
            )

        params = spec.build_params(params)
        n_samples = np.shape(input_matrix)[1]

        raw = spec.fn(input_matrix, input_type, params, True)

        if spec.output_shape == OutputShape.VECTOR:
            result = validate_label_vector(raw, n_samples, spec.name)
        else:
            result = validate_partition(raw, n_samples, spec.name)

        if output_shape is None or output_shape == spec.output_shape:
            return result

        logger.debug(f"Converting {spec.name} output from {spec.output_shape.value} to {output_shape.value}")
        if output_shape == OutputShape.VECTOR:
            return cluster_list_to_vector(result, n_samples)
        return cluster_vector_to_list(result)
