#!/usr/bin/env python3
"""
WSGI entry point for the TKA invoice API (Gunicorn, mod_wsgi).
"""
from tka_invoice import create_app

application = create_app('production')

if __name__ == "__main__":
    application.run()
