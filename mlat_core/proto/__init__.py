"""
Protocol Module: Data model for robust position estimation.

- Points (2D/3D, tolerance equality)
- Radio sources (identity, located sources with position covariance)
- Readings (ranging, RSSI) and fingerprints
- Solutions
"""

from .point import (
    Point,
    Point2D,
    Point3D,
    point_from_array,
)
from .radio_source import (
    RadioSource,
    LocatedRadioSource,
)
from .reading import (
    Reading,
    RangingReading,
    RssiReading,
    Fingerprint,
    index_sources,
)
from .solution import Solution

__all__ = [
    'Point',
    'Point2D',
    'Point3D',
    'point_from_array',
    'RadioSource',
    'LocatedRadioSource',
    'Reading',
    'RangingReading',
    'RssiReading',
    'Fingerprint',
    'index_sources',
    'Solution',
]
