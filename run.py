#!/usr/bin/env python
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file, fallback to .env.development
env_path = Path('.env')
if not env_path.exists():
    env_path = Path('.env.development')
load_dotenv(env_path)

from samplechain import create_app  # noqa: E402
from samplechain.extensions import socketio  # noqa: E402

app = create_app()

if __name__ == '__main__':
    if os.environ.get('FLASK_ENV') == 'development':
        socketio.run(app, debug=True)
    else:
        # Production mode - let gunicorn handle the serving
        socketio.run(app, debug=app.config['DEBUG'])
