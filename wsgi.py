"""
WSGI entry point and Flask CLI target.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade          # Alembic migrations
    flask --app wsgi seed-workflow       # default statuses, roles, chains
    flask --app wsgi create-user alice --role User --department-id 1
"""

from app import create_app

app = create_app()
