"""Pose graph holding measurements as vertices and constraints as edges."""

from __future__ import annotations

import math
import uuid
from collections import deque
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path

import numpy as np

from slam3d.logger import Logger, LogLevel
from slam3d.solver import Solver
from slam3d.storage import MeasurementStorage
from slam3d.types import (
    Constraint,
    EdgeObject,
    Indexer,
    Measurement,
    TentativeConstraint,
    VertexObject,
    inverse_transform,
)


class InvalidVertex(Exception):
    """A vertex id does not exist in the graph."""

    def __init__(self, index: int) -> None:
        self.index = index
        self.message = f"There is no vertex with ID {index} in the graph!"
        super().__init__(self.message)


class InvalidEdge(Exception):
    """A requested edge does not exist."""

    def __init__(self, source: int, target: int) -> None:
        self.source = source
        self.target = target
        self.message = f"No edge between {source} and {target}!"
        super().__init__(self.message)


class DuplicateEdge(Exception):
    """An edge from the same sensor already connects the two vertices."""

    def __init__(self, source: int, target: int, sensor: str) -> None:
        self.source = source
        self.target = target
        self.sensor = sensor
        self.message = (
            f"Edge between {source} and {target} from sensor '{sensor}' already exists!"
        )
        super().__init__(self.message)


class DuplicateMeasurement(Exception):
    """A measurement is already part of the graph."""

    def __init__(self) -> None:
        super().__init__("Measurement already in graph!")


def _copy_vertex(vertex: VertexObject) -> VertexObject:
    return replace(vertex, corrected_pose=np.array(vertex.corrected_pose, dtype=float))


def _dot_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


class Graph:
    """Organizes measurements from different sensors in a pose graph.

    Each added measurement becomes a vertex holding the measurement's UUID,
    its meta data and its pose in the map frame; the measurement itself goes
    to a :class:`MeasurementStorage`. Spatial relations between measurements
    are edges holding a :class:`Constraint`. An optional :class:`Solver`
    receives vertices and edges and optimizes the vertex poses.

    Vertices and edges are kept in memory. Subclasses may keep them
    elsewhere by overriding the protected hooks ``_add_vertex_object``,
    ``_set_vertex``, ``_add_edge`` and ``_remove_edge`` together with the
    query methods.
    """

    def __init__(
        self,
        logger: Logger | None = None,
        storage: MeasurementStorage | None = None,
    ) -> None:
        self.logger = logger if logger is not None else Logger()
        self.storage = storage if storage is not None else MeasurementStorage()
        self.solver: Solver | None = None
        self._indexer = Indexer()
        self._uuid_index: dict[uuid.UUID, int] = {}
        self._vertices: dict[int, VertexObject] = {}
        self._edges: list[EdgeObject] = []
        self._neighbor_points: np.ndarray | None = None
        self._neighbor_ids: list[int] = []
        self._fix_next = False
        self._optimized = False
        self._constraints_added = 0

    # ------------------------------------------------------------------
    # Construction

    def set_solver(self, solver: Solver | None) -> None:
        """Use ``solver`` as optimization backend."""
        self.solver = solver

    def add_vertex(self, measurement: Measurement, corrected) -> int:
        """Add ``measurement`` as a new vertex at pose ``corrected``; return its id."""
        vertex_id = self._indexer.next_id()
        vertex = VertexObject.from_measurement(measurement, vertex_id)
        vertex.corrected_pose = np.array(corrected, dtype=float)
        self._add_vertex_object(vertex)
        self.storage.add(measurement)
        self.logger.message(
            LogLevel.INFO,
            f"Created vertex {vertex_id} "
            f"(from {measurement.robot_name}:{measurement.sensor_name}).",
        )
        self._uuid_index.setdefault(measurement.unique_id, vertex_id)

        if self.solver is not None:
            self.solver.add_vertex(vertex_id, vertex.corrected_pose)
            if self._fix_next:
                self.logger.message(
                    LogLevel.INFO, f"Fixed position of vertex {vertex_id} in backend."
                )
                self.solver.set_fixed(vertex_id)
                self._fix_next = False
        return vertex_id

    def add_tentative_constraint(self, source_id: int, target_id: int, sensor: str) -> None:
        """Add a placeholder edge; it is not passed to the solver."""
        self._add_edge(EdgeObject(source_id, target_id, TentativeConstraint(sensor)))

    def add_constraint(self, source_id: int, target_id: int, constraint: Constraint) -> None:
        """Add an edge holding ``constraint`` and pass it to the solver."""
        edge = EdgeObject(source_id, target_id, constraint)
        self._add_edge(edge)
        self._add_to_solver(edge)

    def remove_constraint(self, source_id: int, target_id: int, sensor: str) -> None:
        """Remove the edge of ``sensor`` between the two vertices from the graph."""
        self._remove_edge(source_id, target_id, sensor)

    def set_corrected_pose(self, vertex_id: int, pose) -> None:
        """Set the map pose of an existing vertex.

        Raises:
            InvalidVertex: if the vertex does not exist.
        """
        vertex = self._vertex(vertex_id)
        updated = replace(vertex, corrected_pose=np.array(pose, dtype=float))
        self._set_vertex(vertex_id, updated)

    # ------------------------------------------------------------------
    # Optimization

    def optimize(self, iterations: int = 100) -> bool:
        """Run the solver and apply its corrections; return whether it succeeded."""
        if self.solver is None:
            self.logger.message(
                LogLevel.ERROR, "A solver must be set before optimize() is called!"
            )
            return False
        if not self.solver.compute(iterations):
            return False
        self._optimized = True
        self._constraints_added = 0

        for vertex_id, pose in self.solver.get_corrections():
            try:
                self.set_corrected_pose(vertex_id, pose)
            except InvalidVertex:
                self.logger.message(
                    LogLevel.ERROR, f"Vertex with id {vertex_id} does not exist!"
                )
        return True

    def optimized(self) -> bool:
        """Return whether optimize() succeeded since the last call, and reset the flag."""
        was_optimized = self._optimized
        self._optimized = False
        return was_optimized

    def num_new_constraints(self) -> int:
        """Return the number of constraints added since the last optimization."""
        return self._constraints_added

    def fix_next(self) -> None:
        """Fix the next added vertex in the solver."""
        self._fix_next = True

    def write_graph_to_file(self, name: str | Path) -> Path:
        """Write the graph in dot format to ``name`` + '.dot'; return the path."""
        path = Path(f"{name}.dot")
        lines = ["graph slam3d {"]
        for vertex in self.get_all_vertices():
            lines.append(f"  {vertex.index} [label={_dot_quote(vertex.label)}];")
        for edge in self._edges:
            label = f"{edge.constraint.sensor_name} ({edge.constraint.type_name})"
            lines.append(f"  {edge.source} -- {edge.target} [label={_dot_quote(label)}];")
        lines.append("}")
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    # ------------------------------------------------------------------
    # Spatial search

    def build_neighbor_index(self, sensors: Iterable[str]) -> None:
        """Index the current poses of all vertices from ``sensors`` for spatial search.

        Raises:
            ValueError: if these sensors have no vertices.
        """
        vertices: list[VertexObject] = []
        for sensor in sorted(set(sensors)):
            vertices.extend(self.get_vertices_from_sensor(sensor))
        if not vertices:
            raise ValueError("Cannot build neighbor index, vertex list is empty.")
        self._neighbor_points = np.array(
            [np.asarray(v.corrected_pose, dtype=float)[:3, 3] for v in vertices]
        )
        self._neighbor_ids = [v.index for v in vertices]

    def get_nearby_vertices(self, transform, radius: float) -> list[VertexObject]:
        """Return indexed vertices near the translation of ``transform``.

        As in a KD-tree L2 search, ``radius`` is compared with the squared
        Euclidean distance. Results are ordered by increasing distance.

        Raises:
            RuntimeError: if build_neighbor_index() has not been called.
        """
        if self._neighbor_points is None:
            raise RuntimeError("Neighbor index has not been built.")
        query = np.asarray(transform, dtype=float)[:3, 3]
        self.logger.message(
            LogLevel.DEBUG,
            f"Doing NN search from ({query[0]}, {query[1]}, {query[2]}) "
            f"with radius {radius}.",
        )
        distances = np.sum((self._neighbor_points - query) ** 2, axis=1)
        order = np.argsort(distances, kind="stable")
        result = []
        for row in order:
            if distances[row] >= radius:
                break
            vertex_id = self._neighbor_ids[row]
            result.append(self.get_vertex(vertex_id))
            self.logger.message(
                LogLevel.DEBUG, f" - vertex {vertex_id} nearby (d = {distances[row]})"
            )
        self.logger.message(
            LogLevel.DEBUG, f"Neighbor search found {len(result)} vertices nearby."
        )
        return result

    # ------------------------------------------------------------------
    # Access

    def get_index(self, uuid: uuid.UUID) -> int:
        """Return the vertex id holding the measurement ``uuid``.

        Raises:
            KeyError: if no vertex holds that measurement.
        """
        return self._uuid_index[uuid]

    def get_vertex(self, vertex_id: int) -> VertexObject:
        """Return a copy of the vertex with ``vertex_id``.

        Raises:
            InvalidVertex: if the vertex does not exist.
        """
        return _copy_vertex(self._vertex(vertex_id))

    def get_vertex_by_uuid(self, uuid: uuid.UUID) -> VertexObject:
        """Return a copy of the vertex holding the measurement ``uuid``."""
        return self.get_vertex(self._uuid_index[uuid])

    def get_measurement(self, vertex_id: int) -> Measurement:
        """Return the measurement attached to the vertex ``vertex_id``."""
        return self.storage.get(self._vertex(vertex_id).measurement_uuid)

    def get_measurement_by_uuid(self, uuid: uuid.UUID) -> Measurement:
        """Return the stored measurement with the unique id ``uuid``."""
        return self.storage.get(uuid)

    def has_measurement(self, uuid: uuid.UUID) -> bool:
        """Return whether a vertex holds the measurement ``uuid``."""
        return uuid in self._uuid_index

    def get_transform(self, source: int, target: int) -> np.ndarray:
        """Return the relative transform from ``source`` to ``target``."""
        source_pose = self._vertex(source).corrected_pose
        target_pose = self._vertex(target).corrected_pose
        return inverse_transform(source_pose) @ np.asarray(target_pose, dtype=float)

    def get_edge(self, source: int, target: int, sensor: str) -> EdgeObject:
        """Return the edge of ``sensor`` between the vertices, in either direction.

        Raises:
            InvalidVertex: if either vertex does not exist.
            InvalidEdge: if there is no such edge.
        """
        self._vertex(source)
        self._vertex(target)
        position = self._find_edge(source, target, sensor)
        if position is None:
            raise InvalidEdge(source, target)
        return replace(self._edges[position])

    def get_out_edges(self, source: int) -> list[EdgeObject]:
        """Return all edges starting at ``source``.

        Raises:
            InvalidVertex: if the vertex does not exist.
        """
        self._vertex(source)
        return [replace(e) for e in self._edges if e.source == source]

    def get_vertices_from_sensor(self, sensor: str) -> list[VertexObject]:
        """Return all vertices whose measurement comes from ``sensor``."""
        return [_copy_vertex(v) for v in self._vertices.values() if v.sensor_name == sensor]

    def get_vertices_by_type(self, type_name: str) -> list[VertexObject]:
        """Return all vertices whose measurement has the type ``type_name``."""
        return [_copy_vertex(v) for v in self._vertices.values() if v.type_name == type_name]

    def get_vertices_in_range(self, source: int, hops: int) -> list[VertexObject]:
        """Return vertices reachable from ``source`` within ``hops`` edges, breadth first.

        Raises:
            InvalidVertex: if the vertex does not exist.
        """
        depths = self._breadth_first(source, max_depth=hops)
        return [self.get_vertex(vertex_id) for vertex_id in depths]

    def get_all_vertices(self) -> list[VertexObject]:
        """Return every vertex in the graph."""
        return [_copy_vertex(v) for v in self._vertices.values()]

    def get_edges_from_sensor(self, sensor: str) -> list[EdgeObject]:
        """Return all edges created by ``sensor``."""
        return [replace(e) for e in self._edges if e.constraint.sensor_name == sensor]

    def get_edges(self, vertices: Iterable[VertexObject]) -> list[EdgeObject]:
        """Return all edges whose both ends are among ``vertices``.

        Raises:
            InvalidVertex: if one of the vertices does not exist.
        """
        ids = set()
        for vertex in vertices:
            self._vertex(vertex.index)
            ids.add(vertex.index)
        return [replace(e) for e in self._edges if e.source in ids and e.target in ids]

    def calculate_graph_distance(self, source: int, target: int) -> float:
        """Return the minimum number of edges between two vertices, or infinity.

        Raises:
            InvalidVertex: if either vertex does not exist.
        """
        self._vertex(target)
        depths = self._breadth_first(source)
        return float(depths[target]) if target in depths else math.inf

    # ------------------------------------------------------------------
    # Storage hooks

    def _add_vertex_object(self, vertex: VertexObject) -> None:
        self._vertices[vertex.index] = vertex

    def _set_vertex(self, vertex_id: int, vertex: VertexObject) -> None:
        self._vertex(vertex_id)
        self._vertices[vertex_id] = vertex

    def _add_edge(self, edge: EdgeObject) -> None:
        self._vertex(edge.source)
        self._vertex(edge.target)
        sensor = edge.constraint.sensor_name
        if self._find_edge(edge.source, edge.target, sensor) is not None:
            raise DuplicateEdge(edge.source, edge.target, sensor)
        self._edges.append(edge)

    def _remove_edge(self, source: int, target: int, sensor: str) -> None:
        position = self._find_edge(source, target, sensor)
        if position is None:
            raise InvalidEdge(source, target)
        del self._edges[position]

    def _add_to_solver(self, edge: EdgeObject) -> None:
        self._constraints_added += 1
        self.logger.message(
            LogLevel.INFO,
            f"{edge.constraint.sensor_name} created edge from node {edge.source} "
            f"to node {edge.target} of type {edge.constraint.type_name}.",
        )
        if self.solver is not None:
            self.solver.add_edge(edge.source, edge.target, edge.constraint)

    # ------------------------------------------------------------------
    # Helpers

    def _vertex(self, vertex_id: int) -> VertexObject:
        try:
            return self._vertices[vertex_id]
        except KeyError:
            raise InvalidVertex(vertex_id) from None

    def _find_edge(self, source: int, target: int, sensor: str) -> int | None:
        for position, edge in enumerate(self._edges):
            if edge.constraint.sensor_name != sensor:
                continue
            if {edge.source, edge.target} == {source, target} and (
                (edge.source, edge.target) in ((source, target), (target, source))
            ):
                return position
        return None

    def _neighbors(self) -> dict[int, list[int]]:
        adjacency: dict[int, list[int]] = {vid: [] for vid in self._vertices}
        for edge in self._edges:
            adjacency[edge.source].append(edge.target)
            if edge.target != edge.source:
                adjacency[edge.target].append(edge.source)
        return adjacency

    def _breadth_first(self, source: int, max_depth: float = math.inf) -> dict[int, int]:
        self._vertex(source)
        adjacency = self._neighbors()
        depths = {source: 0}
        queue = deque([source])
        while queue:
            current = queue.popleft()
            depth = depths[current]
            if depth >= max_depth:
                continue
            for neighbor in adjacency[current]:
                if neighbor not in depths:
                    depths[neighbor] = depth + 1
                    queue.append(neighbor)
        return depths