"""WSGI entry point for KIDSHIELD application."""

import os
from app import create_app

# Use KIDSHIELD_CONFIG for configuration selection (FLASK_ENV is deprecated in Flask 3.x)
config_name = os.environ.get('KIDSHIELD_CONFIG', 'development')
app = create_app(config_name)

if __name__ == '__main__':
    # Development server - use gunicorn in production
    debug = os.environ.get('FLASK_DEBUG', '0') == '1'
    # Local control surface only: the host talks to it over loopback
    app.run(host='127.0.0.1', port=8765, debug=debug, use_reloader=False)
