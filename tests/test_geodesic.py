"""Tests for Dijkstra geodesics over triangle meshes."""

import itertools
import math

import numpy as np
import pytest

from g3d.geodesic import (MeshGeodesics, build_adjacency, closest_vertex, dijkstra_path,
                          edge_matrix, geodesic_path)

# 3 -- 4 -- 5
# |  / |  / |
# 0 -- 1 -- 2
STRIP_VERTICES = np.array([
    [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0],
    [0.0, 1.0, 0.0], [1.0, 1.0, 0.0], [2.0, 1.0, 0.0],
])
STRIP_FACES = np.array([[0, 1, 4], [0, 4, 3], [1, 2, 5], [1, 5, 4]])


class TestGraph:
    """Tests for mesh graph construction."""

    def test_shared_edges_inserted_twice(self):
        graph = build_adjacency(STRIP_VERTICES, STRIP_FACES)
        assert sum(1 for v, _ in graph[0] if v == 4) == 2
        assert all(w == pytest.approx(math.sqrt(2)) for v, w in graph[0] if v == 4)

    def test_edge_matrix_has_unique_edges(self):
        assert edge_matrix(STRIP_VERTICES, STRIP_FACES).nnz == 9

    def test_closest_vertex(self):
        assert closest_vertex(STRIP_VERTICES, (1.9, 0.8, 0.0)) == 5
        assert closest_vertex(np.zeros((0, 3)), (0.0, 0.0, 0.0)) == -1


class TestDijkstra:
    """Tests for shortest vertex paths."""

    @pytest.mark.parametrize("start, end, path, distance", [
        (0, 4, [0, 4], math.sqrt(2)),
        (0, 2, [0, 1, 2], 2.0),
        (3, 5, [3, 4, 5], 2.0),
        (2, 2, [2], 0.0),
    ])
    def test_known_paths(self, start, end, path, distance):
        graph = build_adjacency(STRIP_VERTICES, STRIP_FACES)
        found, length = dijkstra_path(graph, start, end, len(STRIP_VERTICES))
        assert found == path
        assert length == pytest.approx(distance)

    def test_triangle_inequality(self):
        graph = build_adjacency(STRIP_VERTICES, STRIP_FACES)
        for a, b in itertools.combinations(range(len(STRIP_VERTICES)), 2):
            _, length = dijkstra_path(graph, a, b, len(STRIP_VERTICES))
            chord = np.linalg.norm(STRIP_VERTICES[a] - STRIP_VERTICES[b])
            assert length >= chord - 1e-12

    def test_matches_scipy_csgraph(self):
        graph = build_adjacency(STRIP_VERTICES, STRIP_FACES)
        reference = MeshGeodesics(STRIP_VERTICES, STRIP_FACES).distances_from((0.0, 0.0, 0.0))
        for v in range(len(STRIP_VERTICES)):
            _, length = dijkstra_path(graph, 0, v, len(STRIP_VERTICES))
            assert length == pytest.approx(reference[v])


class TestMeshGeodesics:
    """Tests for point-to-point queries."""

    def test_query_points_spliced(self):
        path = geodesic_path((-0.1, 0.0, 0.0), (2.0, 1.2, 0.0), STRIP_VERTICES, STRIP_FACES)
        assert path.reachable
        assert path.distance == pytest.approx(0.1 + 1.0 + math.sqrt(2) + 0.2)
        assert len(path) == 5
        np.testing.assert_allclose(path.points[0], [-0.1, 0.0, 0.0])
        np.testing.assert_allclose(path.points[-1], [2.0, 1.2, 0.0])
        assert path.vertex_path[0] == 0 and path.vertex_path[-1] == 5

    def test_exact_vertices_not_duplicated(self):
        path = geodesic_path((0.0, 0.0, 0.0), (1.0, 1.0, 0.0), STRIP_VERTICES, STRIP_FACES)
        assert len(path) == 2
        assert path.distance == pytest.approx(math.sqrt(2))

    def test_same_vertex(self):
        path = geodesic_path((0.0, 0.0, 0.0), (0.0, 0.0, 0.0), STRIP_VERTICES, STRIP_FACES)
        assert path.distance == 0.0
        assert len(path) == 2

    def test_kdtree_agrees(self):
        brute = geodesic_path((0.2, 0.1, 0.0), (1.8, 0.9, 0.0), STRIP_VERTICES, STRIP_FACES)
        tree = geodesic_path((0.2, 0.1, 0.0), (1.8, 0.9, 0.0), STRIP_VERTICES, STRIP_FACES, use_kdtree=True)
        assert tree.vertex_path == brute.vertex_path
        assert tree.distance == pytest.approx(brute.distance)

    def test_unreachable(self):
        vertices = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0],
                             [5.0, 5.0, 0.0], [6.0, 5.0, 0.0], [5.0, 6.0, 0.0]])
        faces = np.array([[0, 1, 2], [3, 4, 5]])
        path = geodesic_path((0.0, 0.0, 0.0), (6.0, 5.0, 0.0), vertices, faces)
        assert not path.reachable
        assert math.isinf(path.distance)

    def test_empty_mesh(self):
        path = MeshGeodesics(np.zeros((0, 3)), np.zeros((0, 3), dtype=int)).path((0, 0, 0), (1, 1, 1))
        assert not path.reachable
