"""In-memory storage for measurements organised by a pose graph."""

from __future__ import annotations

import uuid
from collections.abc import Iterator

from slam3d.types import Measurement


class MeasurementStorage:
    """Holds measurements keyed by their unique id.

    The pose graph only keeps references (UUIDs) to measurements; the data
    itself lives here. Subclasses may keep the data elsewhere, for example
    on disk or in a database.
    """

    def __init__(self) -> None:
        self._measurements: dict[uuid.UUID, Measurement] = {}

    def add(self, measurement: Measurement) -> None:
        """Store ``measurement``, replacing any with the same unique id."""
        self._measurements[measurement.unique_id] = measurement

    def get(self, key: uuid.UUID | str) -> Measurement:
        """Return the measurement stored under ``key``.

        ``key`` may be a :class:`uuid.UUID` or its string form.

        Raises:
            KeyError: if no measurement is stored under ``key``.
            ValueError: if ``key`` is a string that is not a valid UUID.
        """
        if isinstance(key, str):
            key = uuid.UUID(key)
        return self._measurements[key]

    def contains(self, key: uuid.UUID) -> bool:
        """Return whether a measurement is stored under ``key``."""
        return key in self._measurements

    def __contains__(self, key: object) -> bool:
        return key in self._measurements

    def __len__(self) -> int:
        return len(self._measurements)

    def __iter__(self) -> Iterator[uuid.UUID]:
        return iter(self._measurements)