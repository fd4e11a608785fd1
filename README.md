# slam3d

A frontend for graph-based SLAM (simultaneous localization and mapping) in
three-dimensional space.

The package organizes measurements from different sensors in a pose graph
and keeps track of the spatial constraints between them. It also passes
vertices and edges to an optimization backend that implements the `Solver`
interface. Rigid transforms are 4×4 homogeneous `numpy` arrays.

## Modules

- `slam3d.types`: transform helpers (`identity_transform`, `make_transform`,
  `inverse_transform`, `orthogonalize`), the abstract `Measurement` base class,
  `ConstraintType`, and the constraints `SE3Constraint`, `GravityConstraint`,
  `PositionConstraint`, `OrientationConstraint` and `TentativeConstraint`. It
  also holds the `VertexObject` and `EdgeObject` records and the `Indexer`,
  which hands out vertex ids starting at 1.
- `slam3d.clock`: `Timestamp` (seconds and microseconds) and `Clock`, which
  reads the system time. Subclass `Clock` and override `now()` to use another
  time source.
- `slam3d.logger`: `LogLevel`, `Logger` and `FileLogger`. `Logger` prints
  coloured lines: errors and fatal messages go to standard error, everything
  else to standard output. `FileLogger` appends plain lines to a file and can
  be used as a context manager. Both start at level `INFO`.
- `slam3d.storage`: `MeasurementStorage` is an in-memory store of measurements,
  keyed by UUID. `get()` also accepts the UUID as a string.
- `slam3d.solver`: the abstract `Solver` backend interface and the exceptions
  `DuplicateVertex`, `UnknownVertex` and `BadEdge`. `Solver.add_edge()`
  dispatches on the constraint type and raises `ValueError` for tentative
  constraints.
- `slam3d.graph`: `Graph` keeps vertices and edges in memory. It supports
  lookup by vertex id or measurement UUID, edge queries by sensor,
  breadth-first range queries, graph distances, spatial neighbour search,
  optimization through a solver, and `write_graph_to_file()`, which writes a
  `.dot` file. Its exceptions are `InvalidVertex`, `InvalidEdge`,
  `DuplicateEdge` and `DuplicateMeasurement`.
- `slam3d.sensor`: `Sensor` is the base class for sensors that add vertices.
  `check_min_distance()` decides whether a motion is large enough to add a new
  vertex. The exceptions are `BadMeasurementType` and `NoMatch`.
- `slam3d.pose_sensor`: the abstract `PoseSensor` (odometry, IMU, GPS and the
  like). It is called for every new vertex and may add edges. Its exception is
  `InvalidPose`.
- `slam3d.scan_sensor`: the abstract `ScanSensor`. It adds scans sequentially,
  with or without odometry, builds local patches and links loop closures to
  nearby vertices.
- `slam3d.mapper`: `Mapper` adds measurements to the graph at the current
  pose, calls the registered pose sensors and accepts measurements and
  constraints from other robots.

## Example

```python
import numpy as np

from slam3d.graph import Graph
from slam3d.logger import Logger
from slam3d.mapper import Mapper
from slam3d.types import Measurement, SE3Constraint, make_transform


class Scan(Measurement):
    def type_name(self):
        return "Scan"


logger = Logger()
graph = Graph(logger)
mapper = Mapper(graph, logger)

first = mapper.add_measurement(Scan("robot", "laser", np.eye(4)))
second = mapper.add_measurement(Scan("robot", "laser", np.eye(4)))

step = make_transform(translation=[1.0, 0.0, 0.0])
graph.add_constraint(first, second, SE3Constraint("odometry", step, np.eye(6)))
graph.set_corrected_pose(second, graph.get_vertex(first).corrected_pose @ step)

graph.get_edge(second, first, "odometry")   # edges are found in either direction
graph.calculate_graph_distance(first, second)   # 1.0

graph.build_neighbor_index({"laser"})
graph.get_nearby_vertices(np.eye(4), 2.0)
```

Some behaviour to keep in mind:

- `Graph.get_nearby_vertices()` compares `radius` with the *squared* Euclidean
  distance and returns the vertices nearest first. Call
  `build_neighbor_index()` again after adding vertices or changing poses.
- `Graph.get_vertex()` and the list queries return copies. To change a pose,
  use `set_corrected_pose()`.
- `Graph.optimize()` logs an error and returns `False` when no solver is set.
  Otherwise it applies the solver's corrections to the vertices.
- `Mapper.add_external_constraint()` raises `DuplicateEdge` when the same
  sensor already connects the two vertices. `add_external_measurement()`
  raises `DuplicateMeasurement` when the measurement is already in the graph.

## Writing a scan sensor

Subclass `ScanSensor` and implement two methods:

- `create_constraint(source, target, odometry, loop)` matches two measurements
  and returns a constraint. It raises `NoMatch` when matching fails.
- `create_combined_measurement(vertices, pose)` accumulates the measurements of
  `vertices` into one measurement at `pose`.

Register the sensor with `Mapper.register_sensor()`. For each scan, call
`add_measurement(scan)`, or `add_measurement(scan, odometry)` when an odometry
pose is available. `add_measurement()` returns whether a vertex was added.

`link_last_to_neighbors()` matches the last vertex against nearby vertices that
are far apart in the graph. With `threaded=True` it runs in a background thread
and returns that thread. Use `set_patch_solver()` to optimize local patches
before matching.

## What the package does not do

- It has no optimization backend. `Solver` is an interface only, and you must
  supply an implementation for `Graph.optimize()` to change any poses.
- It has no concrete scan matching. There is no point-cloud or laser sensor;
  `ScanSensor` must be subclassed.
- It keeps measurements only in memory. `MeasurementStorage` does not write to
  disk, and the base `Sensor.create_from_stream()` raises `RuntimeError`.
- It provides no command-line program.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```