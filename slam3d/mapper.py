"""Central entry point that adds measurements to the pose graph."""

from __future__ import annotations

import uuid

import numpy as np

from slam3d.graph import DuplicateEdge, DuplicateMeasurement, Graph, InvalidEdge
from slam3d.logger import Logger, LogLevel
from slam3d.pose_sensor import PoseSensor
from slam3d.sensor import Sensor
from slam3d.types import Measurement, SE3Constraint, identity_transform


class Mapper:
    """Adds measurements to a graph and lets pose sensors connect them."""

    def __init__(self, graph: Graph, logger: Logger, start=None) -> None:
        self.graph = graph
        self.logger = logger
        self.sensors: dict[str, Sensor] = {}
        self.pose_sensors: dict[str, PoseSensor] = {}
        self._last_index = 0
        self._start_pose = (
            identity_transform() if start is None else np.array(start, dtype=float)
        )

    def set_start_pose(self, start) -> None:
        """Set the start pose; only allowed before the first vertex is added."""
        if self._last_index == 0:
            self._start_pose = np.array(start, dtype=float)
        else:
            self.logger.message(
                LogLevel.ERROR, "Start pose must be set before the first node is added!"
            )

    def register_pose_sensor(self, sensor: PoseSensor) -> None:
        """Register a pose sensor that is called for every new vertex."""
        if sensor.name in self.pose_sensors:
            self.logger.message(
                LogLevel.ERROR, f"PoseSensor with name {sensor.name} already exists!"
            )
            return
        self.pose_sensors[sensor.name] = sensor

    def register_sensor(self, sensor: Sensor) -> None:
        """Register a sensor whose measurements can be added to the graph."""
        if sensor.name in self.sensors:
            self.logger.message(
                LogLevel.ERROR, f"Sensor with name {sensor.name} already exists!"
            )
            return
        self.sensors[sensor.name] = sensor
        sensor.set_mapper(self)

    def get_current_pose(self) -> np.ndarray:
        """Return the robot pose in map coordinates."""
        if self._last_index > 0:
            return self.graph.get_vertex(self._last_index).corrected_pose
        return self._start_pose.copy()

    def add_measurement(self, measurement: Measurement) -> int:
        """Add ``measurement`` as a new vertex at the current pose; return its id.

        Every registered pose sensor, in order of name, is called on the new
        vertex; their failures are logged and do not stop the others.
        """
        self.logger.message(
            LogLevel.DEBUG, f"Add reading from own Sensor '{measurement.sensor_name}'."
        )
        self._last_index = self.graph.add_vertex(measurement, self.get_current_pose())
        for name, pose_sensor in sorted(self.pose_sensors.items()):
            try:
                pose_sensor.handle_new_vertex(self._last_index)
            except Exception as exc:
                self.logger.message(LogLevel.ERROR, f"PoseSensor '{name}' failed: {exc}")
        return self._last_index

    def add_external_measurement(
        self,
        measurement: Measurement,
        source_uuid: uuid.UUID,
        transform,
        information,
        sensor: str,
    ) -> None:
        """Add a measurement from another robot, linked to measurement ``source_uuid``.

        Raises:
            DuplicateMeasurement: if the measurement is already in the graph.
            KeyError: if ``source_uuid`` is not in the graph.
        """
        if self.graph.has_measurement(measurement.unique_id):
            raise DuplicateMeasurement()
        relative = np.array(transform, dtype=float)
        pose = self.graph.get_vertex_by_uuid(source_uuid).corrected_pose @ relative
        source = self.graph.get_index(source_uuid)
        target = self.graph.add_vertex(measurement, pose)
        self.graph.add_constraint(source, target, SE3Constraint(sensor, relative, information))

    def add_external_constraint(
        self,
        source_uuid: uuid.UUID,
        target_uuid: uuid.UUID,
        transform,
        information,
        sensor: str,
    ) -> None:
        """Add a constraint from another robot between two known measurements.

        Raises:
            DuplicateEdge: if ``sensor`` already connects the two vertices.
            KeyError: if either measurement is not in the graph.
        """
        source = self.graph.get_index(source_uuid)
        target = self.graph.get_index(target_uuid)
        try:
            self.graph.get_edge(source, target, sensor)
        except InvalidEdge:
            self.graph.add_constraint(
                source, target, SE3Constraint(sensor, transform, information)
            )
            return
        raise DuplicateEdge(source, target, sensor)

    def last_index(self) -> int:
        """Return the id of the last vertex added locally, or 0."""
        return self._last_index