#!/usr/bin/env python3
"""
Local development runner for the Push365 primary
"""

import os
import sys
from pathlib import Path

# Add the project directory to Python path
project_dir = Path(__file__).parent.absolute()
sys.path.insert(0, str(project_dir))

from push365.config import load_env_file

# Load environment variables from .env.local
env_file = project_dir / '.env.local'
if env_file.exists():
    print(f"Loading environment from {env_file}")
    print(f"Set {load_env_file(env_file)} variables")

from push365.app import app

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8080))
    print("\n" + "="*50)
    print("Starting Push365 primary locally")
    print("="*50)
    print(f"Store: {os.environ.get('PUSH365_STORE', 'json')}")
    print(f"Data file: {os.environ.get('PUSH365_DATA', '~/.push365.json')}")
    print(f"MySQL Host: {os.environ.get('MYSQL_HOST')}")
    print(f"Time zone: {os.environ.get('PUSH365_TZ', 'system local')}")
    print("="*50)
    print(f"Access the API at: http://localhost:{port}/api/today")
    print(f"Health check at: http://localhost:{port}/health")
    print("="*50)

    # Run Flask app
    app.run(
        debug=True,
        host='127.0.0.1',
        port=port,
        use_reloader=True
    )
