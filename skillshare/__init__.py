"""SkillShare Hub: skill session marketplace for teachers and learners."""

__version__ = "1.0.0"
