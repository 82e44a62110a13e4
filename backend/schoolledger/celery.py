"""
Celery application configuration.

This is the main Celery app for the school ledger backend.
It runs the scheduled ledger integrity check and balance repair jobs.

Usage:
    # Start worker
    celery -A schoolledger worker -l INFO

    # Start beat scheduler (for periodic tasks)
    celery -A schoolledger beat -l INFO

    # Start both (development only)
    celery -A schoolledger worker -B -l INFO
"""
import os

from celery import Celery

# Set default Django settings
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "schoolledger.settings")

# Create Celery app
app = Celery("schoolledger")

# Load config from Django settings
app.config_from_object("django.conf:settings", namespace="CELERY")

# Auto-discover tasks from all installed apps
app.autodiscover_tasks()
