"""
WSGI / Flask CLI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi seed-stages
    flask --app wsgi create-site-admin admin@example.com <password>
    flask --app wsgi mark-overdue
"""

from app import create_app

app = create_app()
