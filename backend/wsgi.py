# backend/wsgi.py
from agroflow import create_app

app = create_app()
