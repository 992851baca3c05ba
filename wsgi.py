"""
WSGI entry point for deployment
Exports the Flask app for gunicorn (`gunicorn wsgi:application`)
"""
from nodeflow import config
from nodeflow.api.backend import app

# Export for gunicorn
application = app

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=config.PORT, debug=config.DEBUG)
