# backend/wsgi.py
from authnet import create_app

app = create_app()
