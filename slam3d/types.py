"""Core value types: transforms, measurements, constraints, graph objects."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

import numpy as np

from slam3d.clock import Timestamp

_ZERO_TIME = Timestamp(0, 0)


def identity_transform() -> np.ndarray:
    """Return the 4x4 homogeneous identity transform."""
    return np.eye(4)


def make_transform(rotation=None, translation=None) -> np.ndarray:
    """Build a 4x4 isometry from a 3x3 rotation and a 3-vector translation."""
    tf = np.eye(4)
    if rotation is not None:
        rot = np.asarray(rotation, dtype=float)
        if rot.shape != (3, 3):
            raise ValueError("rotation must be a 3x3 matrix")
        tf[:3, :3] = rot
    if translation is not None:
        trans = np.asarray(translation, dtype=float).reshape(-1)
        if trans.shape != (3,):
            raise ValueError("translation must have three components")
        tf[:3, 3] = trans
    return tf


def inverse_transform(transform) -> np.ndarray:
    """Invert an isometry using the transposed rotation."""
    tf = np.asarray(transform, dtype=float)
    rot_t = tf[:3, :3].T
    inv = np.eye(4)
    inv[:3, :3] = rot_t
    inv[:3, 3] = -rot_t @ tf[:3, 3]
    return inv


def _quaternion_from_matrix(m: np.ndarray) -> np.ndarray:
    """Return (w, x, y, z) for a 3x3 matrix, as Eigen's conversion does."""
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    q = np.empty(4)
    if trace > 0:
        t = np.sqrt(trace + 1.0)
        q[0] = 0.5 * t
        t = 0.5 / t
        q[1] = (m[2, 1] - m[1, 2]) * t
        q[2] = (m[0, 2] - m[2, 0]) * t
        q[3] = (m[1, 0] - m[0, 1]) * t
        return q
    i = 0
    if m[1, 1] > m[0, 0]:
        i = 1
    if m[2, 2] > m[i, i]:
        i = 2
    j = (i + 1) % 3
    k = (j + 1) % 3
    t = np.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
    vec = np.empty(3)
    vec[i] = 0.5 * t
    t = 0.5 / t
    q[0] = (m[k, j] - m[j, k]) * t
    vec[j] = (m[j, i] + m[i, j]) * t
    vec[k] = (m[k, i] + m[i, k]) * t
    q[1:] = vec
    return q


def _matrix_from_quaternion(q: np.ndarray) -> np.ndarray:
    w, x, y, z = q
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def orthogonalize(transform) -> np.ndarray:
    """Re-orthogonalize the rotation part of a transform via a unit quaternion."""
    tf = np.array(transform, dtype=float)
    q = _quaternion_from_matrix(tf[:3, :3])
    q /= np.linalg.norm(q)
    tf[:3, :3] = _matrix_from_quaternion(q)
    return tf


class Indexer:
    """Hands out consecutive identifiers starting at 1."""

    def __init__(self) -> None:
        self._next = 1

    def next_id(self) -> int:
        """Return the next unused identifier."""
        value = self._next
        self._next += 1
        return value


class Measurement(ABC):
    """A single sensor reading: a scan, a point cloud, an image and so on."""

    def __init__(
        self,
        robot_name: str,
        sensor_name: str,
        sensor_pose,
        unique_id: uuid.UUID | None = None,
        timestamp: Timestamp = _ZERO_TIME,
    ) -> None:
        self.robot_name = robot_name
        self.sensor_name = sensor_name
        self.timestamp = timestamp
        self._sensor_pose = np.array(sensor_pose, dtype=float)
        self._inverse_sensor_pose = inverse_transform(self._sensor_pose)
        if unique_id is None or unique_id.int == 0:
            unique_id = uuid.uuid4()
        self._unique_id = unique_id

    @property
    def unique_id(self) -> uuid.UUID:
        return self._unique_id

    @property
    def sensor_pose(self) -> np.ndarray:
        return self._sensor_pose.copy()

    @property
    def inverse_sensor_pose(self) -> np.ndarray:
        return self._inverse_sensor_pose.copy()

    @abstractmethod
    def type_name(self) -> str:
        """Return the name of this kind of measurement."""


class ConstraintType(Enum):
    TENTATIVE = 0
    SE3 = 1
    GRAVITY = 2
    POSITION = 3
    ORIENTATION = 4


def _matrix(value, shape: tuple[int, ...], name: str) -> np.ndarray:
    arr = np.array(value, dtype=float)
    if arr.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {arr.shape}")
    return arr


@dataclass(eq=False)
class Constraint:
    """Base of all constraints in the pose graph."""

    type: ClassVar[ConstraintType]
    type_name: ClassVar[str]

    sensor_name: str
    timestamp: Timestamp = field(default=_ZERO_TIME, kw_only=True)

    def __post_init__(self) -> None:
        if not hasattr(type(self), "type"):
            raise TypeError("Constraint is abstract; use a concrete constraint class")


@dataclass(eq=False)
class SE3Constraint(Constraint):
    """Relative 6-DoF pose between two vertices with its information matrix."""

    type: ClassVar[ConstraintType] = ConstraintType.SE3
    type_name: ClassVar[str] = "SE(3)"

    relative_pose: np.ndarray
    information: np.ndarray

    def __post_init__(self) -> None:
        super().__post_init__()
        self.relative_pose = _matrix(self.relative_pose, (4, 4), "relative_pose")
        self.information = _matrix(self.information, (6, 6), "information")


@dataclass(eq=False)
class GravityConstraint(Constraint):
    """Measured direction of gravity against a reference direction."""

    type: ClassVar[ConstraintType] = ConstraintType.GRAVITY
    type_name: ClassVar[str] = "Gravity"

    direction: np.ndarray
    reference: np.ndarray
    covariance: np.ndarray

    def __post_init__(self) -> None:
        super().__post_init__()
        self.direction = _matrix(self.direction, (3,), "direction")
        self.reference = _matrix(self.reference, (3,), "reference")
        self.covariance = _matrix(self.covariance, (2, 2), "covariance")


@dataclass(eq=False)
class PositionConstraint(Constraint):
    """Measured absolute position of a sensor mounted at ``sensor_pose``."""

    type: ClassVar[ConstraintType] = ConstraintType.POSITION
    type_name: ClassVar[str] = "Position"

    position: np.ndarray
    covariance: np.ndarray
    sensor_pose: np.ndarray

    def __post_init__(self) -> None:
        super().__post_init__()
        self.position = _matrix(self.position, (3,), "position")
        self.covariance = _matrix(self.covariance, (3, 3), "covariance")
        self.sensor_pose = _matrix(self.sensor_pose, (4, 4), "sensor_pose")


@dataclass(eq=False)
class OrientationConstraint(Constraint):
    """Measured absolute orientation as a (w, x, y, z) quaternion."""

    type: ClassVar[ConstraintType] = ConstraintType.ORIENTATION
    type_name: ClassVar[str] = "Orientation"

    orientation: np.ndarray
    covariance: np.ndarray
    sensor_pose: np.ndarray

    def __post_init__(self) -> None:
        super().__post_init__()
        self.orientation = _matrix(self.orientation, (4,), "orientation")
        self.covariance = _matrix(self.covariance, (3, 3), "covariance")
        self.sensor_pose = _matrix(self.sensor_pose, (4, 4), "sensor_pose")


@dataclass(eq=False)
class TentativeConstraint(Constraint):
    """Placeholder for a constraint that is still being computed."""

    type: ClassVar[ConstraintType] = ConstraintType.TENTATIVE
    type_name: ClassVar[str] = "Tentative"


@dataclass(eq=False)
class VertexObject:
    """Data attached to a vertex of the pose graph."""

    index: int
    robot_name: str
    sensor_name: str
    type_name: str
    timestamp: Timestamp
    measurement_uuid: uuid.UUID
    label: str = ""
    corrected_pose: np.ndarray = field(default_factory=identity_transform)

    @classmethod
    def from_measurement(cls, measurement: Measurement, index: int) -> VertexObject:
        """Create the vertex data describing ``measurement`` under ``index``."""
        return cls(
            index=index,
            robot_name=measurement.robot_name,
            sensor_name=measurement.sensor_name,
            type_name=measurement.type_name(),
            timestamp=measurement.timestamp,
            measurement_uuid=measurement.unique_id,
            label=f"{measurement.robot_name}:{measurement.sensor_name}({index})",
        )


@dataclass(eq=False)
class EdgeObject:
    """Data attached to an edge of the pose graph."""

    source: int
    target: int
    constraint: Constraint
    label: str = ""