"""
Radio Source Schemas.

A RadioSource identifies a transmitter (WiFi access point, beacon, UWB anchor,
satellite). A LocatedRadioSource adds its known position and, optionally, the
uncertainty of that position.

Located sources are owned by the caller and referenced (never copied) by
readings and estimators.
"""

from dataclasses import dataclass
from typing import Hashable, Optional

import numpy as np

from mlat_core.proto.point import Point, Point2D, Point3D


@dataclass(frozen=True)
class RadioSource:
    """
    Radio source identity.

    Attributes:
        source_id: Opaque identifier (e.g., BSSID "00:11:22:33:44:55")
        frequency_hz: Carrier frequency in Hz, if known
    """

    source_id: Hashable
    frequency_hz: Optional[float] = None

    def __post_init__(self):
        """Validate radio source."""
        if self.source_id is None:
            raise ValueError("Radio source id cannot be None")

        if self.frequency_hz is not None and self.frequency_hz <= 0:
            raise ValueError(f"Frequency must be positive: {self.frequency_hz}")


@dataclass(frozen=True, eq=False)
class LocatedRadioSource:
    """
    Radio source with a known position.

    Attributes:
        source: Identity of the source
        position: Known position (Point2D or Point3D)
        position_covariance: Optional position covariance (dims x dims, m²)

    Notes:
        - Equality is identity: two located sources are the same object
        - The covariance array is made read-only on construction
    """

    source: RadioSource
    position: Point
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self):
        """Validate located source."""
        if not isinstance(self.position, (Point2D, Point3D)):
            raise ValueError(f"Position must be Point2D or Point3D: {self.position!r}")

        if self.position_covariance is not None:
            cov = np.array(self.position_covariance, dtype=float)
            dims = self.position.dims
            if cov.shape != (dims, dims):
                raise ValueError(
                    f"Position covariance must be {dims}x{dims}, got {cov.shape}"
                )
            cov.setflags(write=False)
            object.__setattr__(self, 'position_covariance', cov)

    @property
    def source_id(self) -> Hashable:
        return self.source.source_id

    @property
    def dims(self) -> int:
        """Dimensionality of the source position (2 or 3)."""
        return self.position.dims

    @property
    def position_variance(self) -> float:
        """Total position variance (trace of covariance), 0 if unknown."""
        if self.position_covariance is None:
            return 0.0
        return float(np.trace(self.position_covariance))
