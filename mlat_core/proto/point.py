"""
Point types for 2D and 3D positions.

Points are immutable; equality with a tolerance is explicit via equals().
"""

from dataclasses import dataclass
from typing import Sequence, Union
import math

import numpy as np


DEFAULT_POINT_TOLERANCE = 1e-9


@dataclass(frozen=True)
class Point2D:
    """
    Immutable 2D point (meters).

    Attributes:
        x: X coordinate
        y: Y coordinate
    """

    x: float
    y: float

    DIMENSIONS = 2

    @property
    def dims(self) -> int:
        return self.DIMENSIONS

    def as_tuple(self):
        return (self.x, self.y)

    def to_array(self) -> np.ndarray:
        """Return coordinates as a float numpy array."""
        return np.array(self.as_tuple(), dtype=float)

    def distance_to(self, other: "Point2D") -> float:
        """Euclidean distance to another point of the same dimension."""
        _check_same_dims(self, other)
        return math.dist(self.as_tuple(), other.as_tuple())

    def equals(self, other: "Point2D", tolerance: float = DEFAULT_POINT_TOLERANCE) -> bool:
        """Check coordinate-wise equality within tolerance."""
        if not isinstance(other, Point2D):
            return False
        return all(
            abs(a - b) <= tolerance for a, b in zip(self.as_tuple(), other.as_tuple())
        )


@dataclass(frozen=True)
class Point3D:
    """
    Immutable 3D point (meters).

    Attributes:
        x: X coordinate
        y: Y coordinate
        z: Z coordinate
    """

    x: float
    y: float
    z: float

    DIMENSIONS = 3

    @property
    def dims(self) -> int:
        return self.DIMENSIONS

    def as_tuple(self):
        return (self.x, self.y, self.z)

    def to_array(self) -> np.ndarray:
        """Return coordinates as a float numpy array."""
        return np.array(self.as_tuple(), dtype=float)

    def distance_to(self, other: "Point3D") -> float:
        """Euclidean distance to another point of the same dimension."""
        _check_same_dims(self, other)
        return math.dist(self.as_tuple(), other.as_tuple())

    def equals(self, other: "Point3D", tolerance: float = DEFAULT_POINT_TOLERANCE) -> bool:
        """Check coordinate-wise equality within tolerance."""
        if not isinstance(other, Point3D):
            return False
        return all(
            abs(a - b) <= tolerance for a, b in zip(self.as_tuple(), other.as_tuple())
        )


Point = Union[Point2D, Point3D]


def point_from_array(coords: Sequence[float]) -> Point:
    """
    Build a Point2D or Point3D from a coordinate sequence.

    Raises:
        ValueError: If the sequence has neither 2 nor 3 elements
    """
    values = [float(c) for c in coords]
    if len(values) == 2:
        return Point2D(*values)
    if len(values) == 3:
        return Point3D(*values)
    raise ValueError(f"Points must have 2 or 3 coordinates, got {len(values)}")


def _check_same_dims(a: Point, b: Point):
    if type(a) is not type(b):
        raise ValueError(
            f"Cannot compare {type(a).__name__} with {type(b).__name__}"
        )
