"""
Access Domain Entities
======================

Organizational scope tree, roles and the acting principal.

The campus → college → department hierarchy is explicit: every OrgUnit
holds a reference to its parent, and containment is an upward walk.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Iterator, Optional, Tuple

from helpdesk.config import OrgLevel

_EXPECTED_PARENT = {
    OrgLevel.CAMPUS: None,
    OrgLevel.COLLEGE: OrgLevel.CAMPUS,
    OrgLevel.DEPARTMENT: OrgLevel.COLLEGE,
}


@dataclass(frozen=True)
class OrgUnit:
    """
    A node in the organizational tree.

    A department always sits under a college, and a college under a campus.
    """

    id: str
    level: OrgLevel
    parent: Optional["OrgUnit"] = None

    def __post_init__(self):
        expected = _EXPECTED_PARENT[self.level]
        actual = self.parent.level if self.parent else None
        if actual != expected:
            raise ValueError(
                f"{self.level.value} {self.id} must have a {expected.value if expected else 'no'} parent"
            )

    @classmethod
    def campus(cls, campus_id: str) -> "OrgUnit":
        return cls(campus_id, OrgLevel.CAMPUS)

    @classmethod
    def from_ids(
        cls,
        campus_id: str,
        college_id: Optional[str] = None,
        department_id: Optional[str] = None
    ) -> "OrgUnit":
        """Build the deepest unit named by the ids, with its full lineage."""
        if department_id and not college_id:
            raise ValueError("department scope requires a college")
        unit = cls(campus_id, OrgLevel.CAMPUS)
        if college_id:
            unit = cls(college_id, OrgLevel.COLLEGE, unit)
        if department_id:
            unit = cls(department_id, OrgLevel.DEPARTMENT, unit)
        return unit

    def lineage(self) -> Iterator["OrgUnit"]:
        """Yield this unit and then each ancestor up to the campus."""
        node: Optional[OrgUnit] = self
        while node is not None:
            yield node
            node = node.parent

    def path(self) -> Tuple[Tuple[OrgLevel, str], ...]:
        """(level, id) pairs from the campus down to this unit."""
        return tuple(reversed([(node.level, node.id) for node in self.lineage()]))

    def is_ancestor_or_self_of(self, other: "OrgUnit") -> bool:
        """
        True when `other` lies inside this unit's subtree.

        Whole paths are compared, so a college id reused under another
        campus is a different unit.
        """
        mine = self.path()
        return other.path()[:len(mine)] == mine

    def _id_at(self, level: OrgLevel) -> Optional[str]:
        for node in self.lineage():
            if node.level == level:
                return node.id
        return None

    @property
    def campus_id(self) -> str:
        return self._id_at(OrgLevel.CAMPUS)

    @property
    def college_id(self) -> Optional[str]:
        return self._id_at(OrgLevel.COLLEGE)

    @property
    def department_id(self) -> Optional[str]:
        return self._id_at(OrgLevel.DEPARTMENT)


@dataclass(frozen=True)
class Role:
    """A named, immutable set of capability strings."""

    name: str
    capabilities: FrozenSet[str]
    display_name: str = ""


@dataclass(frozen=True)
class Principal:
    """
    An already-authenticated actor with resolved roles and org scope.

    The system principal is used for SLA-driven escalation and other
    transitions triggered without a human actor; it bypasses capability
    checks.
    """

    user_id: str
    roles: FrozenSet[Role] = field(default_factory=frozenset)
    scope: Optional[OrgUnit] = None
    is_system: bool = False

    @classmethod
    def system(cls) -> "Principal":
        return cls(user_id="system", is_system=True)

    @property
    def role_names(self) -> FrozenSet[str]:
        return frozenset(role.name for role in self.roles)
