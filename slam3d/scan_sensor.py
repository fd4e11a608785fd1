"""Sensor producing scans that are matched against each other to create edges."""

from __future__ import annotations

import threading
from abc import abstractmethod

import numpy as np

from slam3d.graph import Graph, InvalidEdge, InvalidVertex
from slam3d.logger import Logger, LogLevel
from slam3d.mapper import Mapper
from slam3d.sensor import NoMatch, Sensor
from slam3d.solver import BadEdge, Solver
from slam3d.types import (
    Constraint,
    ConstraintType,
    Measurement,
    SE3Constraint,
    VertexObject,
    identity_transform,
    inverse_transform,
)


class ScanSensor(Sensor):
    """A sensor whose measurements are registered by scan matching.

    Subclasses provide the matching in :meth:`create_constraint` and the
    accumulation of several scans in :meth:`create_combined_measurement`.
    """

    def __init__(self, name: str, logger: Logger) -> None:
        super().__init__(name, logger)
        self.patch_solver: Solver | None = None
        self._patch_solver_lock = threading.Lock()
        self.patch_building_range = 0
        self.max_neighbor_links = 1
        self.neighbor_radius = 1.0
        self.min_loop_length = 10
        self.link_previous = True
        self._last_odometry = identity_transform()
        self._last_transform = identity_transform()
        self.link_sensors.add(name)

    # ------------------------------------------------------------------
    # Configuration

    def set_patch_solver(self, solver: Solver | None) -> None:
        """Use ``solver`` to optimize local patches before matching.

        It must not be the backend solver, as it is cleared for every patch.
        """
        self.patch_solver = solver

    def set_patch_building_range(self, hops: int) -> None:
        """Build patches from all vertices within ``hops`` edges of the source."""
        self.logger.message(LogLevel.INFO, f"patch_building_range:   {hops}")
        self.patch_building_range = hops

    def set_neighbor_radius(self, radius: float, max_links: int) -> None:
        """Match new vertices against at most ``max_links`` vertices within ``radius``."""
        self.logger.message(LogLevel.INFO, f"neighbor_radius:        {radius}")
        self.logger.message(LogLevel.INFO, f"max_neighbor_links:     {max_links}")
        self.neighbor_radius = radius
        self.max_neighbor_links = max_links

    def set_min_loop_length(self, length: int) -> None:
        """Set the minimum graph distance for a loop-closing link."""
        self.logger.message(LogLevel.INFO, f"min_loop_length:        {length}")
        self.min_loop_length = length

    def set_link_previous(self, link: bool) -> None:
        """Set whether each scan is matched against its predecessor."""
        self.logger.message(LogLevel.INFO, f"link_previous:          {link}")
        self.link_previous = link

    # ------------------------------------------------------------------
    # Adding measurements

    def _mapper(self) -> Mapper:
        if self.mapper is None:
            raise RuntimeError(f"Sensor '{self.name}' is not registered with a mapper")
        return self.mapper

    @property
    def _graph(self) -> Graph:
        return self._mapper().graph

    def add_measurement(self, measurement: Measurement, odometry=None) -> bool:
        """Add a scan, optionally with the odometry pose it was taken at.

        Returns whether the scan was added as a new vertex.
        """
        if odometry is None:
            return self._add_by_matching(measurement)
        return self._add_with_odometry(measurement, np.array(odometry, dtype=float))

    def _add_by_matching(self, measurement: Measurement) -> bool:
        mapper = self._mapper()
        if self._last_vertex == 0:
            self._last_vertex = mapper.add_measurement(measurement)
            return True

        graph = mapper.graph
        source = graph.get_measurement(self._last_vertex)
        try:
            constraint = self.create_constraint(
                source, measurement, self._last_transform, False
            )
            se3 = constraint if isinstance(constraint, SE3Constraint) else None
            if se3 is not None:
                self._last_transform = np.array(se3.relative_pose, dtype=float)
            if se3 is None or self.check_min_distance(self._last_transform):
                new_vertex = mapper.add_measurement(measurement)
                if se3 is not None:
                    graph.set_corrected_pose(new_vertex, self.get_current_pose())
                    self._last_transform = identity_transform()
                graph.add_constraint(self._last_vertex, new_vertex, constraint)
                self._last_vertex = new_vertex
                return True
        except Exception as exc:
            self.logger.message(LogLevel.WARNING, f"Could not add Measurement: {exc}")
        return False

    def _add_with_odometry(self, measurement: Measurement, odometry: np.ndarray) -> bool:
        mapper = self._mapper()
        if self._last_vertex == 0:
            self._last_vertex = mapper.add_measurement(measurement)
            self._last_odometry = odometry
            return True

        self._last_transform = inverse_transform(self._last_odometry) @ odometry
        if not self.check_min_distance(self._last_transform):
            return False

        graph = mapper.graph
        new_vertex = mapper.add_measurement(measurement)
        source = graph.get_measurement(self._last_vertex)
        if self.link_previous:
            try:
                constraint = self.create_constraint(
                    source, measurement, self._last_transform, False
                )
                graph.add_constraint(self._last_vertex, new_vertex, constraint)
                if isinstance(constraint, SE3Constraint):
                    self._last_transform = np.array(constraint.relative_pose, dtype=float)
                graph.set_corrected_pose(new_vertex, self.get_current_pose())
            except Exception as exc:
                self.logger.message(
                    LogLevel.WARNING, f"Could not link Measurement to previous: {exc}"
                )
        self._last_odometry = odometry
        self._last_vertex = new_vertex
        self._last_transform = identity_transform()
        return True

    def check_measurement_distance(self, odometry) -> bool:
        """Return whether a scan taken at ``odometry`` would be added."""
        if self._last_vertex == 0:
            return True
        relative = inverse_transform(self._last_odometry) @ np.asarray(odometry, dtype=float)
        return self.check_min_distance(relative)

    # ------------------------------------------------------------------
    # Matching

    @abstractmethod
    def create_combined_measurement(
        self, vertices: list[VertexObject], pose
    ) -> Measurement:
        """Accumulate the scans of ``vertices`` into one measurement at ``pose``.

        Raises:
            BadMeasurementType: if a vertex holds a foreign measurement.
        """

    @abstractmethod
    def create_constraint(
        self, source: Measurement, target: Measurement, odometry, loop: bool
    ) -> Constraint:
        """Match ``target`` against ``source`` starting from the guess ``odometry``.

        Raises:
            NoMatch: if the measurements could not be matched.
        """

    def build_patch(self, source: int) -> Measurement:
        """Build a local map patch around the vertex ``source``."""
        graph = self._graph
        if self.patch_building_range == 0:
            return graph.get_measurement(source)

        vertices = graph.get_vertices_in_range(source, self.patch_building_range)
        self.logger.message(
            LogLevel.DEBUG, f"Building pointcloud patch from {len(vertices)} nodes."
        )

        if self.patch_solver is not None:
            with self._patch_solver_lock:
                self._optimize_patch(source, vertices)
        return self.create_combined_measurement(
            vertices, graph.get_vertex(source).corrected_pose
        )

    def _optimize_patch(self, source: int, vertices: list[VertexObject]) -> None:
        solver = self.patch_solver
        solver.clear()
        for vertex in vertices:
            solver.add_vertex(vertex.index, vertex.corrected_pose)

        for edge in self._graph.get_edges(vertices):
            if edge.constraint.type is not ConstraintType.SE3:
                continue
            try:
                solver.add_edge(edge.source, edge.target, edge.constraint)
            except BadEdge as exc:
                self.logger.message(LogLevel.ERROR, str(exc))

        solver.set_fixed(source)
        solver.compute()
        by_index = {vertex.index: vertex for vertex in vertices}
        for vertex_id, pose in solver.get_corrections():
            vertex = by_index.get(vertex_id)
            if vertex is None:
                self.logger.message(
                    LogLevel.ERROR,
                    f"Could not apply patch-solver result for vertex {vertex_id}!",
                )
                continue
            vertex.corrected_pose = np.array(pose, dtype=float)

    def link(self, source_id: int, target_id: int, guess=None) -> None:
        """Match the patches around two vertices and connect them by an edge.

        Without ``guess`` the current relative pose from the graph is used.
        """
        graph = self._graph
        if guess is None:
            guess = graph.get_transform(source_id, target_id)

        graph.add_tentative_constraint(source_id, target_id, self.name)
        source_m = self.build_patch(source_id)
        target_m = self.build_patch(target_id)
        try:
            constraint = self.create_constraint(source_m, target_m, guess, True)
        except NoMatch as exc:
            self.logger.message(
                LogLevel.WARNING,
                f"Failed to link vertex {source_id} and {target_id}, because {exc}.",
            )
            graph.remove_constraint(source_id, target_id, self.name)
            return
        graph.remove_constraint(source_id, target_id, self.name)
        graph.add_constraint(source_id, target_id, constraint)

    def link_to_neighbors(self, vertex: int) -> None:
        """Link ``vertex`` to spatially near vertices that are far away in the graph."""
        if self.max_neighbor_links == 0:
            return

        graph = self._graph
        graph.build_neighbor_index(self.link_sensors)
        pose = graph.get_vertex(vertex).corrected_pose
        neighbors = graph.get_nearby_vertices(pose, self.neighbor_radius)

        count = 0
        for neighbor in reversed(neighbors):
            if count >= self.max_neighbor_links:
                break
            index = neighbor.index
            if index == vertex:
                continue
            try:
                graph.get_edge(vertex, index, self.name)
                continue
            except InvalidEdge:
                pass
            except InvalidVertex as exc:
                self.logger.message(LogLevel.ERROR, str(exc))
                return

            dist = graph.calculate_graph_distance(index, vertex)
            self.logger.message(
                LogLevel.DEBUG, f"Distance({index},{vertex}) in Graph is: {dist}"
            )
            if dist <= self.patch_building_range * 2 or dist < self.min_loop_length:
                continue
            count += 1
            self.link(index, vertex)

    def link_last_to_neighbors(self, threaded: bool = False) -> threading.Thread | None:
        """Link the last added vertex to its neighbours.

        With ``threaded`` the work runs in a background thread, which is returned.
        """
        if self.max_neighbor_links < 1:
            return None
        if threaded:
            worker = threading.Thread(
                target=self.link_to_neighbors, args=(self._last_vertex,), daemon=True
            )
            worker.start()
            return worker
        self.link_to_neighbors(self._last_vertex)
        return None

    def get_current_pose(self) -> np.ndarray:
        """Return the current pose from sequential scan matching."""
        if self._last_vertex:
            last_pose = self._graph.get_vertex(self._last_vertex).corrected_pose
            return np.asarray(last_pose, dtype=float) @ self._last_transform
        return self._mapper().get_current_pose()