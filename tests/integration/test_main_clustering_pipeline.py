"""
Integration tests for the full post-processing pipeline.

Runs the built-in algorithms end to end and checks the properties every
returned clustering must satisfy.
"""

import numpy as np
import pandas as pd
import pytest

from clusterpost.core.algorithm_spec import AlgorithmRegistry
from clusterpost.core.clustering_engine import ClusteringEngine, main_clustering
from clusterpost.core.formatting import cluster_list_to_vector
from clusterpost.core.silhouette import silhouette_widths


def as_set_of_sets(partition):
    return sorted(sorted(int(i) for i in members) for members in partition)


def check_partition(partition, n_samples):
    """Disjoint sets drawn from 0..N-1."""
    seen = set()
    for members in partition:
        members = set(int(i) for i in members)
        assert members
        assert members <= set(range(n_samples))
        assert not (members & seen)
        seen |= members


def check_vector(labels, partition):
    """Positive labels are 1..k' and match partition membership."""
    labels = np.asarray(labels)
    k = len(partition)
    assert set(labels[labels > 0].tolist()) == set(range(1, k + 1))
    for i, members in enumerate(partition):
        assert set(np.flatnonzero(labels == i + 1).tolist()) == set(int(m) for m in members)
    assert np.all((labels == -1) | (labels > 0))


@pytest.mark.integration
class TestMainClusteringPipeline:
    """End-to-end scenarios."""

    def test_two_triplets_fixed_k(self, engine, triplet_diss):
        clusters = engine.run("hierarchicalK", triplet_diss, "diss", {"k": 2}, output_format="list")
        assert [c.tolist() for c in clusters] == [[0, 1, 2], [3, 4, 5]]

        labels = cluster_list_to_vector(clusters, 6)
        assert np.all(silhouette_widths(labels, triplet_diss) > 0)

    def test_two_triplets_best_order(self, engine, uneven_triplet_diss):
        clusters = engine.run(
            "hierarchicalK", uneven_triplet_diss, "diss", {"k": 2},
            order_by="best", output_format="list", remove_sil=True, sil_cutoff=-1.0,
        )
        assert [sorted(c.tolist()) for c in clusters] == [[3, 4, 5], [0, 1, 2]]

    def test_find_best_k(self, engine, triplet_diss):
        labels = engine.run("hierarchicalK", triplet_diss, "diss", find_best_k=True)
        assert sorted(set(labels.tolist())) == [1, 2]

    def test_find_best_k_around_given_k(self, engine, make_block_diss):
        diss = make_block_diss([[0, 1, 2], [3, 4, 5], [6, 7, 8]], within=[1, 1, 1], between=10)
        labels = engine.run("hierarchicalK", diss, "diss", {"k": 5}, findBestK=True)
        assert sorted(set(labels.tolist())) == [1, 2, 3]

    def test_min_size_scenario(self, engine, make_block_diss):
        diss = make_block_diss([[0, 1], [2, 3, 4, 5]], within=[1, 1], between=10)
        labels = engine.run("hierarchicalK", diss, "diss", {"k": 2}, min_size=3)
        assert labels.tolist() == [-1, -1, 1, 1, 1, 1]

    def test_remove_sil_with_data_matrix(self, engine):
        data = np.array(
            [
                [0.0, 0.1, 0.0, 10.0, 10.1, 10.0, 5.0],
                [0.0, 0.0, 0.1, 10.0, 10.0, 10.1, 5.0],
            ]
        )
        diss = np.sqrt(((data[:, :, None] - data[:, None, :]) ** 2).sum(axis=0))
        labels = engine.run(
            "hierarchicalK", data, "X", {"k": 2}, remove_sil=True, sil_cutoff=0.2, diss=diss
        )
        assert labels.iloc[6] == -1
        assert labels.iloc[0] == labels.iloc[1] == labels.iloc[2] > 0
        assert labels.iloc[3] == labels.iloc[4] == labels.iloc[5] > 0

    def test_threshold_algorithm(self, engine, make_block_diss):
        diss = make_block_diss([[0, 1, 2, 3], [4, 5]], within=[0.1, 0.2], between=0.9)
        names = [f"sample_{i}" for i in range(6)]
        frame = pd.DataFrame(diss, index=names, columns=names)
        labels = engine.run("hierarchical01", frame, "diss", {"alpha": 0.5})
        assert labels.to_dict() == {
            "sample_0": 1, "sample_1": 1, "sample_2": 1, "sample_3": 1,
            "sample_4": 2, "sample_5": 2,
        }

    def test_parallel_engine_matches_sequential(self, engine, parallel_engine, make_block_diss):
        diss = make_block_diss([[0, 1, 2], [3, 4, 5, 6], [7, 8]], within=[1, 2, 1], between=10)
        sequential = engine.run("hierarchicalK", diss, "diss", find_best_k=True, k_range=[2, 3, 4, 5])
        parallel = parallel_engine.run("hierarchicalK", diss, "diss", find_best_k=True, k_range=[2, 3, 4, 5])
        assert sequential.tolist() == parallel.tolist()

    @pytest.mark.parametrize("order_by", ["size", "best"])
    @pytest.mark.parametrize("remove_sil", [False, True])
    def test_output_properties(self, engine, order_by, remove_sil):
        rng = np.random.default_rng(7)
        centers = np.array([[0.0, 0.0], [6.0, 0.0], [0.0, 6.0]])
        points = np.vstack([c + rng.normal(scale=1.2, size=(8, 2)) for c in centers])
        diss = np.sqrt(((points[:, None, :] - points[None, :, :]) ** 2).sum(axis=-1))
        n = len(points)

        clusters = engine.run(
            "hierarchicalK", diss, "diss", find_best_k=True, k_range=range(2, 7),
            remove_sil=remove_sil, sil_cutoff=0.1, min_size=2, order_by=order_by, output_format="list",
        )
        labels = engine.run(
            "hierarchicalK", diss, "diss", find_best_k=True, k_range=range(2, 7),
            remove_sil=remove_sil, sil_cutoff=0.1, min_size=2, order_by=order_by,
        )

        check_partition(clusters, n)
        check_vector(labels.to_numpy(), clusters)
        assert all(len(c) >= 2 for c in clusters)
        if order_by == "size":
            sizes = [len(c) for c in clusters]
            assert sizes == sorted(sizes, reverse=True)

    def test_main_clustering_uses_global_settings(self, triplet_diss):
        labels = main_clustering("hierarchicalK", triplet_diss, "diss", cluster_args={"k": 2})
        assert sorted(set(labels.tolist())) == [1, 2]

    def test_custom_registry(self, triplet_diss, make_list_algorithm):
        registry = AlgorithmRegistry([make_list_algorithm([[0, 1, 2, 3, 4, 5]], name="everything")])
        engine = ClusteringEngine(registry=registry)
        assert engine.run("everything", triplet_diss, "diss", {"alpha": 0.1}).tolist() == [1] * 6

    def test_two_triplets_vector_numbering(self, engine, triplet_diss):
        labels = engine.run("hierarchicalK", triplet_diss, "diss", {"k": 2})
        assert labels.tolist() == [1, 1, 1, 2, 2, 2]

    def test_kmeans_with_diss_override(self, engine, two_blob_data):
        diss = np.sqrt(((two_blob_data[:, :, None] - two_blob_data[:, None, :]) ** 2).sum(axis=0))
        clusters = engine.run(
            "kmeansK", two_blob_data, "X", find_best_k=True, k_range=[2, 3, 4], diss=diss,
            output_format="list",
        )
        assert [c.tolist() for c in clusters] == [[0, 1, 2], [3, 4, 5]]
