"""
WSGI / Flask CLI entry point.

Usage:
    gunicorn wsgi:app                     # production server
    flask db upgrade                      # apply migrations/versions
    flask run-job consolidation_sweep     # retry failed consolidations
    flask run-job transport_validation    # validate PENDING records
"""

from app import create_app

app = create_app()
