import eventlet
eventlet.monkey_patch()
import os
from app import create_app, socketio

env = os.environ.get('env')
port = 80
if env == "development":
    port = 5000
app = create_app()

if __name__ == '__main__':
    socketio.run(app, debug=env == "development", host='0.0.0.0', port=port)
