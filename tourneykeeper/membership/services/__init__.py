from .invitation import InvitationService
from .membership import MembershipService

__all__ = ["InvitationService", "MembershipService"]
