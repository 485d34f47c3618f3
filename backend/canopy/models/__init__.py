# Importing the models registers them on Base.metadata (Alembic, create_all).
from canopy.models.project import Project
from canopy.models.subject import Subject

__all__ = ["Project", "Subject"]
