"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db init       # first time only (creates migrations/)
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi set-plan <workspace-slug> pro
    gunicorn wsgi:app
"""

from agileflow import create_app

app = create_app()
