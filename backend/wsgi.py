# backend/wsgi.py
from lenden import create_app

app = create_app()
