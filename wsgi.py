"""
WSGI entry point: used by gunicorn.

RQ worker for upline sync jobs:
    rq worker upline_sync --url $REDIS_URL
"""
from command_center import create_app

app = create_app()

if __name__ == '__main__':
    import os
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', 8080)))
