"""
Requester identity passed explicitly to every service operation.

The HTTP layer decodes a bearer token into a ``Requester``; webhook
ingestion acts as ``Requester.system()``. Services never read ambient
request state to make authorization decisions.
"""

import enum
from dataclasses import dataclass
from typing import Optional
from uuid import UUID


class Role(str, enum.Enum):
    """Roles a requester can act under."""

    ADMIN = "admin"
    SUPPLIER = "supplier"
    DROPSHIPPER = "dropshipper"
    SOURCING_AGENT = "sourcing_agent"
    SYSTEM = "system"


@dataclass(frozen=True)
class Requester:
    """
    Identity and marketplace affiliations of the caller.

    Attributes:
        user_id: Acting user, recorded on history and ledger entries
        role: Role the caller acts under
        supplier_id: Supplier profile owned by the caller, if any
        dropshipper_id: Dropshipper profile owned by the caller, if any
        sourcing_agent_id: Sourcing agent profile owned by the caller, if any
    """

    user_id: Optional[UUID]
    role: Role
    supplier_id: Optional[UUID] = None
    dropshipper_id: Optional[UUID] = None
    sourcing_agent_id: Optional[UUID] = None

    @classmethod
    def system(cls, user_id: Optional[UUID] = None) -> "Requester":
        """Identity used by webhook ingestion and background jobs."""
        return cls(user_id=user_id, role=Role.SYSTEM)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_system(self) -> bool:
        return self.role == Role.SYSTEM

    @property
    def is_privileged(self) -> bool:
        """Admins and the system identity bypass ownership checks."""
        return self.role in (Role.ADMIN, Role.SYSTEM)

    def acts_as_supplier(self, supplier_id: Optional[UUID]) -> bool:
        return supplier_id is not None and self.supplier_id == supplier_id

    def acts_as_dropshipper(self, dropshipper_id: Optional[UUID]) -> bool:
        return dropshipper_id is not None and self.dropshipper_id == dropshipper_id

    def acts_as_sourcing_agent(self, sourcing_agent_id: Optional[UUID]) -> bool:
        return (
            sourcing_agent_id is not None
            and self.sourcing_agent_id == sourcing_agent_id
        )

    def describe(self) -> dict:
        """Structured representation for log context."""
        return {
            "requester_role": self.role.value,
            "requester_id": str(self.user_id) if self.user_id else None,
        }
