# backend/wsgi.py
from grocerymart import create_app

app = create_app()
