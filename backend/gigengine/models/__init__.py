"""Database models"""
from gigengine.models.user import User
from gigengine.models.gig import (
    ApplicationStatus,
    Gig,
    GigApplication,
    GigSkill,
    GigStatus,
)

__all__ = [
    "User",
    "Gig",
    "GigSkill",
    "GigApplication",
    "GigStatus",
    "ApplicationStatus",
]
