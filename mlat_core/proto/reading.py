"""
Reading and Fingerprint Schemas.

A reading associates one RadioSource with one observed quantity:
- RangingReading: measured distance (m)
- RssiReading: received power (dBm)

Readings never carry a location. Locations are resolved at estimation time by
matching reading.source.source_id against the located sources.

A Fingerprint is the ordered set of readings captured at one unknown position
at one instant.
"""

from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterator, List, Optional, Sequence, Union

from mlat_core.proto.radio_source import LocatedRadioSource, RadioSource


@dataclass(frozen=True)
class RangingReading:
    """
    Distance measured to a radio source.

    Attributes:
        source: Radio source the distance was measured to
        distance_m: Measured distance in meters
        distance_std_m: Distance standard deviation (m), if available

    Notes:
        - Distance cannot be negative
        - A non-positive std means "unknown"; the estimator substitutes its
          configured fallback
    """

    source: RadioSource
    distance_m: float
    distance_std_m: Optional[float] = None

    def __post_init__(self):
        """Validate ranging reading."""
        if self.distance_m < 0:
            raise ValueError(f"Distance cannot be negative: {self.distance_m}")

    @property
    def source_id(self) -> Hashable:
        return self.source.source_id

    @property
    def has_valid_std(self) -> bool:
        """True if a strictly positive standard deviation is available."""
        return self.distance_std_m is not None and self.distance_std_m > 0


@dataclass(frozen=True)
class RssiReading:
    """
    Received signal strength from a radio source.

    Attributes:
        source: Radio source the power was received from
        rssi_dbm: Received power in dBm
        rssi_std_db: Received power standard deviation (dB), if available
    """

    source: RadioSource
    rssi_dbm: float
    rssi_std_db: Optional[float] = None

    @property
    def source_id(self) -> Hashable:
        return self.source.source_id

    @property
    def has_valid_std(self) -> bool:
        """True if a strictly positive standard deviation is available."""
        return self.rssi_std_db is not None and self.rssi_std_db > 0


Reading = Union[RangingReading, RssiReading]


@dataclass
class Fingerprint:
    """
    Readings taken at a single unknown position at one instant.

    Attributes:
        readings: Readings in insertion order

    Notes:
        - Insertion order is preserved so sampling is reproducible for a
          fixed random seed
    """

    readings: List[Reading] = field(default_factory=list)

    def add(self, reading: Reading):
        """Append a reading."""
        self.readings.append(reading)

    def __len__(self) -> int:
        return len(self.readings)

    def __iter__(self) -> Iterator[Reading]:
        return iter(self.readings)

    def __getitem__(self, index: int) -> Reading:
        return self.readings[index]

    @property
    def source_ids(self) -> list:
        """Source ids referenced by the readings, in order."""
        return [r.source_id for r in self.readings]

    def get_readings_by_source(self, source_id: Hashable) -> List[Reading]:
        """
        Get all readings for a given source.

        Args:
            source_id: Source id to find

        Returns:
            List of readings (empty if none)
        """
        return [r for r in self.readings if r.source_id == source_id]

    @classmethod
    def from_distances(
        cls,
        sources: Sequence[RadioSource],
        distances: Sequence[float],
        stds: Optional[Sequence[float]] = None,
    ) -> "Fingerprint":
        """
        Build a ranging fingerprint from parallel source/distance lists.

        Raises:
            ValueError: If list lengths differ
        """
        if len(sources) != len(distances):
            raise ValueError(
                f"sources ({len(sources)}) and distances ({len(distances)}) differ in length"
            )
        if stds is not None and len(stds) != len(distances):
            raise ValueError(
                f"stds ({len(stds)}) and distances ({len(distances)}) differ in length"
            )

        readings = []
        for i, (source, distance) in enumerate(zip(sources, distances)):
            std = stds[i] if stds is not None else None
            # Located sources are accepted and unwrapped to their identity
            identity = source.source if isinstance(source, LocatedRadioSource) else source
            readings.append(RangingReading(identity, float(distance), std))
        return cls(readings)


def index_sources(sources) -> Dict[Hashable, int]:
    """
    Map source ids to their index in a located-source list.

    The first occurrence wins when ids repeat.
    """
    index: Dict[Hashable, int] = {}
    for i, located in enumerate(sources):
        index.setdefault(located.source_id, i)
    return index
