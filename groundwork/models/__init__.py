# Database models package
from groundwork.models.user import User
from groundwork.models.context_entry import ContextEntry, ContextSnapshot
from groundwork.models.persona import Persona
from groundwork.models.resume import Resume, ResumeBullet, BulletRejection
from groundwork.models.render_job import RenderJob

__all__ = [
    "User",
    "ContextEntry",
    "ContextSnapshot",
    "Persona",
    "Resume",
    "ResumeBullet",
    "BulletRejection",
    "RenderJob",
]
