# students/apps.py
"""Students app configuration."""

from django.apps import AppConfig


class StudentsConfig(AppConfig):
    """Configuration for the students app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "students"
    verbose_name = "Students"
