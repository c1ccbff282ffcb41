"""
WSGI entry point and Flask CLI target.

Usage:
    flask db upgrade                      # apply migrations/versions
    flask run-job unit_escalation_sweep   # run one scheduled job now
"""

from app import create_app

app = create_app()
