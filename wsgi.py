"""
WSGI / Flask CLI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi init-tasks
    flask --app wsgi run-due-tasks      # point the system cron at this
    flask --app wsgi db migrate -m "description"
"""

from doclife import create_app

app = create_app()
