import math

import numpy as np
import pytest

from slam3d.graph import (
    DuplicateEdge,
    DuplicateMeasurement,
    Graph,
    InvalidEdge,
    InvalidVertex,
)
from slam3d.logger import Logger, LogLevel
from slam3d.solver import Solver
from slam3d.types import (
    ConstraintType,
    GravityConstraint,
    Measurement,
    OrientationConstraint,
    PositionConstraint,
    SE3Constraint,
    identity_transform,
    make_transform,
)


class SampleMeasurement(Measurement):
    def type_name(self):
        return "TestMeasurement"


class OtherMeasurement(Measurement):
    def type_name(self):
        return "Other"


class RecordingSolver(Solver):
    def __init__(self, corrections=None, succeed=True):
        super().__init__(None)
        self.vertices = {}
        self.edges = []
        self.fixed = []
        self.corrections = corrections or []
        self.succeed = succeed
        self.iterations = None

    def add_vertex(self, vertex_id, pose):
        self.vertices[vertex_id] = pose

    def add_edge_se3(self, source, target, se3):
        self.edges.append((source, target, se3))

    def add_edge_gravity(self, vertex, gravity):
        self.edges.append((vertex, None, gravity))

    def add_edge_position(self, vertex, position):
        self.edges.append((vertex, None, position))

    def add_edge_orientation(self, vertex, orientation):
        self.edges.append((vertex, None, orientation))

    def set_fixed(self, vertex_id):
        self.fixed.append(vertex_id)

    def compute(self, iterations=100):
        self.iterations = iterations
        return self.succeed

    def clear(self):
        self.vertices.clear()
        self.edges.clear()

    def save_graph(self, filename):
        pass

    def get_corrections(self):
        return self.corrections


def quiet_logger():
    logger = Logger()
    logger.set_log_level(LogLevel.FATAL)
    return logger


def make_graph():
    return Graph(quiet_logger())


def add(graph, robot="R1", sensor="S1", pose=None, cls=SampleMeasurement):
    m = cls(robot, sensor, identity_transform())
    pose = identity_transform() if pose is None else pose
    return graph.add_vertex(m, pose), m


def se3(sensor):
    return SE3Constraint(sensor, identity_transform(), np.eye(6))


@pytest.fixture
def built_graph():
    graph = make_graph()
    for expected, (robot, sensor) in enumerate([("R1", "S1"), ("R1", "S1"), ("R1", "S2")], 1):
        vid, _ = add(graph, robot, sensor)
        assert vid == expected
        assert graph.get_vertex(vid).index == expected
    graph.add_constraint(1, 2, se3("S1"))
    graph.add_constraint(2, 3, se3("S2"))
    return graph


def test_get_edge_either_direction(built_graph):
    assert built_graph.get_edge(1, 2, "S1").target == 2
    assert built_graph.get_edge(2, 1, "S1").target == 2
    with pytest.raises(InvalidEdge):
        built_graph.get_edge(1, 3, "A")


def test_edges_and_vertices_from_sensor(built_graph):
    edges = built_graph.get_edges_from_sensor("S1")
    assert len(edges) == 1
    assert (edges[0].source, edges[0].target) == (1, 2)
    assert len(built_graph.get_vertices_from_sensor("S1")) == 2


def test_gravity_constraint_round_trip(built_graph):
    c = GravityConstraint("S3", np.ones(3), np.ones(3), np.eye(2))
    built_graph.add_constraint(1, 2, c)
    res = built_graph.get_edge(1, 2, "S3").constraint
    assert res.type is ConstraintType.GRAVITY
    assert res.sensor_name == "S3"
    np.testing.assert_array_equal(res.covariance, c.covariance)
    np.testing.assert_array_equal(res.direction, c.direction)
    np.testing.assert_array_equal(res.reference, c.reference)


def test_position_and_orientation_round_trip(built_graph):
    p = PositionConstraint("S4", np.ones(3), np.eye(3), identity_transform())
    o = OrientationConstraint("S5", np.array([1.0, 0, 0, 0]), np.eye(3), identity_transform())
    built_graph.add_constraint(1, 2, p)
    built_graph.add_constraint(1, 2, o)
    p_res = built_graph.get_edge(1, 2, "S4").constraint
    o_res = built_graph.get_edge(1, 2, "S5").constraint
    assert p_res.type is ConstraintType.POSITION
    np.testing.assert_array_equal(p_res.position, p.position)
    np.testing.assert_array_equal(p_res.sensor_pose, p.sensor_pose)
    assert o_res.type is ConstraintType.ORIENTATION
    np.testing.assert_array_equal(o_res.orientation, o.orientation)


def test_graph_distance_and_all_vertices(built_graph):
    assert int(built_graph.calculate_graph_distance(1, 3)) == 2
    add(built_graph, "R2", "S1")
    assert len(built_graph.get_all_vertices()) == 4
    assert built_graph.calculate_graph_distance(1, 4) == math.inf


def test_duplicate_edge_raises(built_graph):
    with pytest.raises(DuplicateEdge) as info:
        built_graph.add_constraint(2, 1, se3("S1"))
    assert info.value.sensor == "S1"


def test_invalid_vertex():
    graph = make_graph()
    with pytest.raises(InvalidVertex) as info:
        graph.get_vertex(99)
    assert info.value.index == 99
    assert str(info.value) == "There is no vertex with ID 99 in the graph!"
    with pytest.raises(InvalidVertex):
        graph.add_constraint(1, 2, se3("S1"))


def test_duplicate_measurement_message():
    assert str(DuplicateMeasurement()) == "Measurement already in graph!"


def test_uuid_index_and_measurements():
    graph = make_graph()
    vid, m = add(graph)
    assert graph.has_measurement(m.unique_id)
    assert graph.get_index(m.unique_id) == vid
    assert graph.get_vertex_by_uuid(m.unique_id).index == vid
    assert graph.get_measurement(vid) is m
    assert graph.get_measurement_by_uuid(m.unique_id) is m
    other = SampleMeasurement("R", "S", identity_transform())
    assert not graph.has_measurement(other.unique_id)
    with pytest.raises(KeyError):
        graph.get_index(other.unique_id)


def test_vertex_label_and_type():
    graph = make_graph()
    vid, _ = add(graph, "R1", "S1")
    add(graph, "R1", "S1", cls=OtherMeasurement)
    vertex = graph.get_vertex(vid)
    assert vertex.label == "R1:S1(1)"
    assert [v.index for v in graph.get_vertices_by_type("Other")] == [2]


def test_get_transform_composes_poses():
    graph = make_graph()
    a = make_transform(np.array([[0, -1, 0], [1, 0, 0], [0, 0, 1.0]]), [1, 2, 3])
    b = make_transform(None, [4, 0, -1])
    v1, _ = add(graph, pose=a)
    v2, _ = add(graph, pose=b)
    rel = graph.get_transform(v1, v2)
    np.testing.assert_allclose(a @ rel, b, atol=1e-12)


def test_get_vertex_returns_copy():
    graph = make_graph()
    vid, _ = add(graph)
    vertex = graph.get_vertex(vid)
    vertex.corrected_pose[0, 3] = 42.0
    assert graph.get_vertex(vid).corrected_pose[0, 3] == 0.0


def test_set_corrected_pose():
    graph = make_graph()
    vid, _ = add(graph)
    pose = make_transform(None, [1, 2, 3])
    graph.set_corrected_pose(vid, pose)
    np.testing.assert_array_equal(graph.get_vertex(vid).corrected_pose, pose)
    with pytest.raises(InvalidVertex):
        graph.set_corrected_pose(7, pose)


def test_optimize_without_solver_fails():
    graph = make_graph()
    assert graph.optimize() is False
    assert graph.optimized() is False


def test_optimize_applies_corrections():
    pose = make_transform(None, [5, 0, 0])
    solver = RecordingSolver(corrections=[(1, pose), (99, pose)])
    graph = make_graph()
    graph.set_solver(solver)
    add(graph)
    add(graph)
    graph.add_constraint(1, 2, se3("S1"))
    assert graph.num_new_constraints() == 1
    assert graph.optimize(7) is True
    assert solver.iterations == 7
    np.testing.assert_array_equal(graph.get_vertex(1).corrected_pose, pose)
    assert graph.num_new_constraints() == 0
    assert graph.optimized() is True
    assert graph.optimized() is False


def test_failed_optimization_keeps_state():
    solver = RecordingSolver(succeed=False)
    graph = make_graph()
    graph.set_solver(solver)
    add(graph)
    add(graph)
    graph.add_constraint(1, 2, se3("S1"))
    assert graph.optimize() is False
    assert graph.num_new_constraints() == 1


def test_solver_receives_vertices_edges_and_fix():
    solver = RecordingSolver()
    graph = make_graph()
    graph.set_solver(solver)
    graph.fix_next()
    v1, _ = add(graph)
    v2, _ = add(graph)
    assert solver.fixed == [v1]
    assert set(solver.vertices) == {v1, v2}
    graph.add_tentative_constraint(v1, v2, "T")
    assert solver.edges == []
    graph.add_constraint(v1, v2, se3("S1"))
    assert [(s, t) for s, t, _ in solver.edges] == [(v1, v2)]


def test_tentative_and_remove_constraint():
    graph = make_graph()
    add(graph)
    add(graph)
    graph.add_tentative_constraint(1, 2, "L")
    assert graph.get_edge(1, 2, "L").constraint.type is ConstraintType.TENTATIVE
    graph.remove_constraint(1, 2, "L")
    with pytest.raises(InvalidEdge):
        graph.get_edge(1, 2, "L")
    with pytest.raises(InvalidEdge):
        graph.remove_constraint(1, 2, "L")
    graph.add_constraint(1, 2, se3("L"))
    assert graph.get_edge(1, 2, "L").constraint.type is ConstraintType.SE3


def chain_graph(length):
    graph = make_graph()
    for _ in range(length):
        add(graph)
    for i in range(1, length):
        graph.add_constraint(i, i + 1, se3("S1"))
    return graph


def test_vertices_in_range():
    graph = chain_graph(4)
    assert {v.index for v in graph.get_vertices_in_range(2, 1)} == {1, 2, 3}
    assert [v.index for v in graph.get_vertices_in_range(2, 0)] == [2]
    assert {v.index for v in graph.get_vertices_in_range(1, 10)} == {1, 2, 3, 4}
    with pytest.raises(InvalidVertex):
        graph.get_vertices_in_range(9, 1)


def test_get_edges_between_vertices_and_out_edges():
    graph = chain_graph(4)
    subset = [graph.get_vertex(1), graph.get_vertex(2), graph.get_vertex(3)]
    edges = graph.get_edges(subset)
    assert {(e.source, e.target) for e in edges} == {(1, 2), (2, 3)}
    assert [(e.source, e.target) for e in graph.get_out_edges(2)] == [(2, 3)]
    with pytest.raises(InvalidVertex):
        graph.get_out_edges(42)


def test_neighbor_search():
    graph = make_graph()
    add(graph, pose=make_transform(None, [5, 0, 0]))
    add(graph, pose=make_transform(None, [1, 0, 0]))
    add(graph, pose=identity_transform())
    add(graph, sensor="other", pose=identity_transform())
    graph.build_neighbor_index({"S1"})
    found = graph.get_nearby_vertices(identity_transform(), 2.0)
    assert [v.index for v in found] == [3, 2]


def test_neighbor_index_errors():
    graph = make_graph()
    with pytest.raises(RuntimeError):
        graph.get_nearby_vertices(identity_transform(), 1.0)
    with pytest.raises(ValueError):
        graph.build_neighbor_index({"S1"})


def test_write_graph_to_file(tmp_path):
    graph = chain_graph(2)
    path = graph.write_graph_to_file(tmp_path / "graph")
    text = path.read_text(encoding="utf-8")
    assert path.name == "graph.dot"
    assert '"R1:S1(1)"' in text
    assert "1 -- 2" in text