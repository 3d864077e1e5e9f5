"""
Role checks shared by the service layer.
"""
from typing import Iterable, Optional

from ..models.models import Ticket, User


ADMIN = "admin"
MANAGEMENT = "management"
CALL_ADMIN = "call_admin"
TECHNICIAN = "technician"

ALL_ROLES = (ADMIN, MANAGEMENT, CALL_ADMIN, TECHNICIAN)

# Who may create and edit tickets and customers
TICKET_ADMIN_ROLES = (ADMIN, CALL_ADMIN, MANAGEMENT)
# Who may see reports and manage machines and parts
REPORT_ROLES = (ADMIN, MANAGEMENT)
# Who may manage user accounts
USER_ADMIN_ROLES = (ADMIN, CALL_ADMIN)


def has_role(user: Optional[User], roles: Iterable[str]) -> bool:
    """Check that a user is present, active and holds one of ``roles``."""
    if user is None or getattr(user, "disabled", False):
        return False
    return user.role in tuple(roles)


def is_technician(user: Optional[User]) -> bool:
    return has_role(user, (TECHNICIAN,))


def is_assigned_technician(user: Optional[User], ticket: Ticket) -> bool:
    """
    Check if user is the technician a ticket is assigned to.
    """
    return is_technician(user) and ticket.assigned_to is not None and str(ticket.assigned_to) == str(user.id)
