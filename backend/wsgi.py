# backend/wsgi.py
from registry import create_app

app = create_app()
