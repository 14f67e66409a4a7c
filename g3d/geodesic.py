"""
Approximate geodesics on a triangulated surface.

The mesh is treated as an undirected graph over its vertices with edge
lengths as weights. Query points snap to their nearest vertex, Dijkstra
finds the vertex path, and the exact query points are spliced onto both
ends. Paths follow mesh edges, so they overestimate the true surface
distance.
"""

import heapq
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import dijkstra
from scipy.spatial import cKDTree

Adjacency = Dict[int, List[Tuple[int, float]]]


@dataclass
class GeodesicPath:
    points: np.ndarray          # (N, 3), query points included
    distance: float
    vertex_path: List[int]
    reachable: bool = True

    def __len__(self):
        return len(self.points)


def build_adjacency(vertices: np.ndarray, faces: np.ndarray) -> Adjacency:
    """
    Adjacency lists from triangles.

    Edges (a, b), (b, c), (c, a) of every face are added in both directions;
    an edge shared by two faces simply appears twice.
    """
    vertices = np.asarray(vertices, dtype=float)
    graph: Adjacency = {}
    for a, b, c in np.asarray(faces, dtype=int):
        for u, v in ((a, b), (b, c), (c, a)):
            u, v = int(u), int(v)
            weight = float(np.linalg.norm(vertices[u] - vertices[v]))
            graph.setdefault(u, []).append((v, weight))
            graph.setdefault(v, []).append((u, weight))
    return graph


def edge_matrix(vertices: np.ndarray, faces: np.ndarray):
    """Sparse symmetric edge-length matrix of the mesh graph (CSR)"""
    vertices = np.asarray(vertices, dtype=float)
    faces = np.asarray(faces, dtype=int)
    lengths: Dict[Tuple[int, int], float] = {}
    for a, b, c in faces:
        for i, j in ((a, b), (b, c), (c, a)):
            key = (int(min(i, j)), int(max(i, j)))
            lengths[key] = float(np.linalg.norm(vertices[i] - vertices[j]))
    n = len(vertices)
    rows = [i for i, _ in lengths]
    cols = [j for _, j in lengths]
    # one entry per edge; callers run csgraph with directed=False
    return coo_matrix((list(lengths.values()), (rows, cols)), shape=(n, n)).tocsr()


def closest_vertex(vertices: np.ndarray, point) -> int:
    """Brute-force nearest vertex; -1 for an empty mesh"""
    vertices = np.asarray(vertices, dtype=float)
    if len(vertices) == 0:
        return -1
    return int(np.argmin(np.linalg.norm(vertices - np.asarray(point, dtype=float), axis=1)))


def dijkstra_path(graph: Adjacency, start: int, end: int, vertex_count: int) -> Tuple[List[int], float]:
    """
    Shortest vertex path from start to end.

    Returns:
        (path, distance); ([], inf) when end is unreachable
    """
    dist = [math.inf] * vertex_count
    previous: List[Optional[int]] = [None] * vertex_count
    dist[start] = 0.0
    queue = [(0.0, start)]

    while queue:
        d, u = heapq.heappop(queue)
        if u == end:
            break
        if d > dist[u]:
            continue
        for v, weight in graph.get(u, ()):
            candidate = d + weight
            if candidate < dist[v]:
                dist[v] = candidate
                previous[v] = u
                heapq.heappush(queue, (candidate, v))

    if math.isinf(dist[end]):
        return [], math.inf

    path = [end]
    while path[-1] != start:
        path.append(previous[path[-1]])
    path.reverse()
    return path, dist[end]


class MeshGeodesics:
    """
    Reusable geodesic queries over one mesh.

    Args:
        vertices: (N, 3) vertex positions
        faces: (M, 3) triangle indices
        use_kdtree: Snap query points with a scipy KD-tree instead of a
            linear scan (worth it for large meshes or many queries)
    """

    def __init__(self, vertices, faces, use_kdtree: bool = False):
        self.vertices = np.asarray(vertices, dtype=float).reshape(-1, 3)
        self.faces = np.asarray(faces, dtype=int).reshape(-1, 3)
        self.graph = build_adjacency(self.vertices, self.faces)
        self.tree = cKDTree(self.vertices) if use_kdtree and len(self.vertices) else None

    def nearest(self, point) -> int:
        if self.tree is not None:
            _, index = self.tree.query(np.asarray(point, dtype=float))
            return int(index)
        return closest_vertex(self.vertices, point)

    def path(self, start_point, end_point) -> GeodesicPath:
        """
        Geodesic between two points near the surface.

        distance = |start - v_start| + graph distance + |end - v_end|
        """
        start_point = np.asarray(start_point, dtype=float)
        end_point = np.asarray(end_point, dtype=float)
        start = self.nearest(start_point)
        end = self.nearest(end_point)
        if start < 0 or end < 0:
            return GeodesicPath(np.zeros((0, 3)), 0.0, [], reachable=False)

        vertex_path, graph_distance = dijkstra_path(self.graph, start, end, len(self.vertices))
        if not vertex_path:
            return GeodesicPath(np.array([start_point, end_point]), math.inf, [], reachable=False)

        snap_start = float(np.linalg.norm(start_point - self.vertices[start]))
        snap_end = float(np.linalg.norm(end_point - self.vertices[end]))

        points = [self.vertices[i] for i in vertex_path]
        if snap_start > 0:
            points.insert(0, start_point)
        if snap_end > 0:
            points.append(end_point)
        if len(points) == 1:
            points.append(points[0])

        return GeodesicPath(np.array(points), snap_start + graph_distance + snap_end, vertex_path)

    def distances_from(self, point) -> np.ndarray:
        """Graph distance from the vertex nearest `point` to every vertex (scipy csgraph)"""
        source = self.nearest(point)
        return dijkstra(edge_matrix(self.vertices, self.faces), directed=False, indices=source)


def geodesic_path(start_point, end_point, vertices, faces, use_kdtree: bool = False) -> GeodesicPath:
    """One-shot geodesic query; build MeshGeodesics to reuse the graph."""
    return MeshGeodesics(vertices, faces, use_kdtree).path(start_point, end_point)
