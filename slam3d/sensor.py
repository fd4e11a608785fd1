"""Base class for sensors whose measurements become vertices of the graph."""

from __future__ import annotations

import math
import uuid
from typing import IO, TYPE_CHECKING

import numpy as np

from slam3d.logger import Logger, LogLevel
from slam3d.types import Measurement

if TYPE_CHECKING:
    from slam3d.mapper import Mapper


class BadMeasurementType(Exception):
    """A sensor was given a measurement of a type it cannot handle."""

    def __init__(self) -> None:
        super().__init__("Measurement type does not match sensor type!")


class NoMatch(Exception):
    """Two measurements could not be matched."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def _rotation_angle(rotation: np.ndarray) -> float:
    diagonal_sum = float(rotation.diagonal().sum())
    cos_angle = (diagonal_sum - 1.0) / 2.0
    return math.acos(min(1.0, max(-1.0, cos_angle)))


class Sensor:
    """A sensor used in the mapping process.

    The sensor adds its measurements to the graph and builds representations
    (maps) from its readings using the corrected poses.
    """

    def __init__(self, name: str, logger: Logger) -> None:
        self.mapper: Mapper | None = None
        self.logger = logger
        self.name = name
        self._last_vertex = 0
        self.min_translation = 0.0
        self.min_rotation = 0.0
        self.covariance_scale = 1.0
        self.link_sensors: set[str] = set()

    def set_mapper(self, mapper: Mapper) -> None:
        """Set the mapper that uses this sensor."""
        self.mapper = mapper

    def set_min_pose_distance(self, translation: float, rotation: float) -> None:
        """Set the minimal translation (m) and rotation (rad) between adjacent vertices."""
        self.logger.message(
            LogLevel.INFO,
            f"min_pose_distance:      {translation} m / {rotation} rad",
        )
        self.min_translation = translation
        self.min_rotation = rotation

    def check_min_distance(self, transform) -> bool:
        """Return whether the relative motion ``transform`` is large enough for a new scan."""
        tf = np.asarray(transform, dtype=float)
        rotation = _rotation_angle(tf[:3, :3])
        translation = float(np.linalg.norm(tf[:3, 3]))
        return not (translation < self.min_translation and abs(rotation) < self.min_rotation)

    def last_vertex_id(self) -> int:
        """Return the id of the last vertex added by this sensor, or 0."""
        return self._last_vertex

    def set_covariance_scale(self, scale: float) -> None:
        """Set the covariance scale for measurements of this sensor."""
        self.covariance_scale = scale

    def add_link_sensor(self, name: str) -> None:
        """Also use measurements of sensor ``name`` when linking to neighbours."""
        self.link_sensors.add(name)

    def create_from_stream(
        self,
        robot: str,
        sensor: str,
        pose,
        uuid: uuid.UUID,
        stream: IO[bytes],
    ) -> Measurement:
        """Create a measurement from meta data and a serialized payload.

        Raises:
            RuntimeError: this sensor does not support deserialization.
        """
        raise RuntimeError(f"Sensor '{self.name}' cannot create measurements from a stream")