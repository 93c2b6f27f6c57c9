"""Drive commands issued to the robot, recorded alongside its telemetry."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Direction(Enum):
    """Wheel side for one-wheel turns."""

    LEFT = "Left"
    RIGHT = "Right"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Command:
    """
    A drive command and its parameters.

    The string form (``Turn(90)``, ``TurnRadius(200, 45)``) is what ends up in
    exported logs and in the session name.
    """

    name: str
    params: tuple = ()

    def __str__(self) -> str:
        return f"{self.name}({', '.join(str(p) for p in self.params)})"

    # -------------------------------------------------------------------------
    # Known commands
    # -------------------------------------------------------------------------

    @classmethod
    def turn(cls, angle: int) -> Command:
        return cls("Turn", (angle,))

    @classmethod
    def turn_radius(cls, radius: int, angle: int) -> Command:
        return cls("TurnRadius", (radius, angle))

    @classmethod
    def drive_dist(cls, distance: int) -> Command:
        return cls("DriveDist", (distance,))

    @classmethod
    def drive_line(cls, distance: int) -> Command:
        return cls("DriveLine", (distance,))

    @classmethod
    def align_dist(cls, distance: int) -> Command:
        return cls("AlignDist", (distance,))

    @classmethod
    def align_line(cls, distance: int) -> Command:
        return cls("AlignLine", (distance,))

    @classmethod
    def turn_one_wheel(cls, angle: int, direction: Direction) -> Command:
        return cls("TurnOneWheel", (angle, direction))
