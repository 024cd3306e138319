"""Input sensor kinds and checks that a tracking call matches the configured sensor."""

from __future__ import annotations

from enum import IntEnum


class Sensor(IntEnum):
    MONOCULAR = 0
    STEREO = 1
    RGBD = 2


_LABELS = {
    Sensor.MONOCULAR: "Monocular",
    Sensor.STEREO: "Stereo",
    Sensor.RGBD: "RGB-D",
}


class SensorMismatchError(ValueError):
    """A tracking entry point was called for a sensor the system was not set up for."""

    def __init__(self, expected, actual, method):
        self.expected = Sensor(expected)
        self.actual = Sensor(actual)
        self.method = method
        super().__init__(
            f"you called {method} but input sensor was not set to "
            f"{sensor_label(self.expected)} (it is {sensor_label(self.actual)})"
        )


def sensor_label(sensor):
    """Human-readable name of a sensor kind."""
    return _LABELS[Sensor(sensor)]


def check_sensor(expected, actual, method):
    """Raise :class:`SensorMismatchError` unless ``actual`` is ``expected``."""
    if Sensor(expected) != Sensor(actual):
        raise SensorMismatchError(expected, actual, method)