from .profile import Profile, Role
from .scan_session import ScanSession
from .project import Project, ProjectMatch, ProjectStatus, MatchStatus
from .assessment import Assessment
from .lead import Lead, LeadEvent, LeadStatus
from .proposal import Proposal, ProposalStatus

__all__ = [
    "Profile",
    "Role",
    "ScanSession",
    "Project",
    "ProjectMatch",
    "ProjectStatus",
    "MatchStatus",
    "Assessment",
    "Lead",
    "LeadEvent",
    "LeadStatus",
    "Proposal",
    "ProposalStatus",
]
