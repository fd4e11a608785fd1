"""Abstract interface for graph optimization backends."""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from slam3d.logger import Logger
from slam3d.types import (
    Constraint,
    ConstraintType,
    GravityConstraint,
    OrientationConstraint,
    PositionConstraint,
    SE3Constraint,
)

IdPose = tuple[int, np.ndarray]


class DuplicateVertex(Exception):
    """A vertex with the given id has already been added."""

    def __init__(self, vertex_id: int) -> None:
        self.vertex_id = vertex_id
        self.message = f"Vertex with ID: {vertex_id} has already been defined!"
        super().__init__(self.message)


class UnknownVertex(Exception):
    """A requested vertex id does not exist."""

    def __init__(self, vertex_id: int) -> None:
        self.vertex_id = vertex_id
        self.message = f"Vertex with ID: {vertex_id} does not exist!"
        super().__init__(self.message)


class BadEdge(Exception):
    """The source or target of an edge does not exist."""

    def __init__(self, source: int, target: int) -> None:
        self.source = source
        self.target = target
        self.message = f"Failed to create edge from vertex {source} to {target}!"
        super().__init__(self.message)


class Solver(ABC):
    """Base class for graph optimization backends."""

    def __init__(self, logger: Logger | None = None) -> None:
        self.logger = logger

    @abstractmethod
    def add_vertex(self, vertex_id: int, pose: np.ndarray) -> None:
        """Add a vertex with its initial pose."""

    def add_edge(self, source: int, target: int, constraint: Constraint) -> None:
        """Add a constraint, dispatching on its type.

        Unary constraints (gravity, position, orientation) attach to
        ``source``; ``target`` is used only for SE(3) constraints.

        Raises:
            ValueError: if the constraint type is not known to the solver.
        """
        kind = constraint.type
        if kind is ConstraintType.SE3:
            self.add_edge_se3(source, target, constraint)
        elif kind is ConstraintType.GRAVITY:
            self.add_edge_gravity(source, constraint)
        elif kind is ConstraintType.POSITION:
            self.add_edge_position(source, constraint)
        elif kind is ConstraintType.ORIENTATION:
            self.add_edge_orientation(source, constraint)
        else:
            raise ValueError(
                f"Edge with type {constraint.type_name} is not known to the Solver!"
            )

    @abstractmethod
    def add_edge_se3(self, source: int, target: int, se3: SE3Constraint) -> None:
        """Add a relative pose edge between two existing vertices."""

    @abstractmethod
    def add_edge_gravity(self, vertex: int, gravity: GravityConstraint) -> None:
        """Add a gravity direction edge to an existing vertex."""

    @abstractmethod
    def add_edge_position(self, vertex: int, position: PositionConstraint) -> None:
        """Add an absolute position edge to an existing vertex."""

    @abstractmethod
    def add_edge_orientation(
        self, vertex: int, orientation: OrientationConstraint
    ) -> None:
        """Add an absolute orientation edge to an existing vertex."""

    @abstractmethod
    def set_fixed(self, vertex_id: int) -> None:
        """Keep the given vertex in place during optimization."""

    @abstractmethod
    def compute(self, iterations: int = 100) -> bool:
        """Optimize the graph; return whether optimization succeeded."""

    @abstractmethod
    def clear(self) -> None:
        """Remove all vertices and constraints."""

    @abstractmethod
    def save_graph(self, filename: str) -> None:
        """Save the current graph to ``filename`` in a backend-specific format."""

    @abstractmethod
    def get_corrections(self) -> list[IdPose]:
        """Return the optimized (vertex id, pose) pairs after :meth:`compute`."""

    def set_logger(self, logger: Logger) -> None:
        """Replace the logger used by the solver."""
        self.logger = logger