from app.models.institution import Institution, SkillLevelSetting
from app.models.group import Group, users_groups
from app.models.user import User, UserRole
from app.models.domain import Domain
from app.models.skill import Skill, SkillLevel, skills_sources
from app.models.source import Source, ProcessingStatus
from app.models.assessment import Assessment, AssessmentStatus, assessments_skills, assessments_groups
from app.models.attempt import Attempt, AttemptStatus, ConversationMessage, MessageType
from app.models.result import Result
from app.models.dispute import Dispute, DisputeStatus

__all__ = [
    "Institution",
    "SkillLevelSetting",
    "Group",
    "users_groups",
    "User",
    "UserRole",
    "Domain",
    "Skill",
    "SkillLevel",
    "skills_sources",
    "Source",
    "ProcessingStatus",
    "Assessment",
    "AssessmentStatus",
    "assessments_skills",
    "assessments_groups",
    "Attempt",
    "AttemptStatus",
    "ConversationMessage",
    "MessageType",
    "Result",
    "Dispute",
    "DisputeStatus",
]
