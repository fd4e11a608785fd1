"""Frontend for graph-based simultaneous localization and mapping in 3D."""

__version__ = "0.1.0"

__all__ = [
    "clock",
    "graph",
    "logger",
    "mapper",
    "pose_sensor",
    "scan_sensor",
    "sensor",
    "solver",
    "storage",
    "types",
]