"""Base class for sensors that provide poses and create edges only."""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from slam3d.clock import Timestamp
from slam3d.graph import Graph
from slam3d.logger import Logger


class InvalidPose(Exception):
    """A pose could not be provided."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class PoseSensor(ABC):
    """A sensor providing relative or absolute poses, e.g. odometry, IMU or GPS.

    Unlike a :class:`~slam3d.sensor.Sensor` it never creates vertices; for
    every new vertex :meth:`handle_new_vertex` is called and may add edges.
    """

    def __init__(self, name: str, graph: Graph, logger: Logger) -> None:
        self.graph = graph
        self.logger = logger
        self.name = name
        self.covariance_scale = 1.0

    @abstractmethod
    def handle_new_vertex(self, vertex: int) -> None:
        """Process the newly added vertex ``vertex``."""

    @abstractmethod
    def get_pose(self, stamp: Timestamp) -> np.ndarray:
        """Return the sensor's pose at ``stamp`` in its own reference frame."""

    def set_covariance_scale(self, scale: float) -> None:
        """Set the covariance scale for measurements of this sensor."""
        self.covariance_scale = scale