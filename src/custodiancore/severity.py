"""Impact levels shared by action planning, risk and compliance reporting."""

from __future__ import annotations

from enum import Enum


class Impact(Enum):
    """Impact of a planned action on a resource.

    Also used as the risk level of a matched resource and the severity of
    its compliance status.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_string(cls, value: str) -> Impact:
        """Parse impact from string (case-insensitive)."""
        value = value.lower()
        for member in cls:
            if member.value == value:
                return member
        raise ValueError(f"Unknown impact: {value}")

    @property
    def rank(self) -> int:
        return _IMPACT_ORDER[self]

    def __lt__(self, other: Impact) -> bool:
        if not isinstance(other, Impact):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: Impact) -> bool:
        return self < other or self == other

    def __gt__(self, other: Impact) -> bool:
        if not isinstance(other, Impact):
            return NotImplemented
        return not (self <= other)

    def __ge__(self, other: Impact) -> bool:
        return not (self < other)


_IMPACT_ORDER = {
    Impact.LOW: 0,
    Impact.MEDIUM: 1,
    Impact.HIGH: 2,
}


def highest_impact(impacts: list[Impact]) -> Impact:
    """Return the most severe impact, LOW for an empty list."""
    if not impacts:
        return Impact.LOW
    return max(impacts)
