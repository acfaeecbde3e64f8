"""
WSGI entry point.

Point the server at this file and the ``application`` callable, e.g.:

    gunicorn wsgi:application

Configuration comes from the environment (or a ``.env`` file next to app.py):
DATABASE_URL, SECRET_KEY, TOKEN_MAX_AGE_SECONDS, STREAK_TZ_OFFSET_HOURS.
"""
import sys
import os

# Make sure the project directory is on the path
project_dir = os.path.dirname(os.path.abspath(__file__))
if project_dir not in sys.path:
    sys.path.insert(0, project_dir)

from app import app as application  # noqa: F401,E402
