import os

SECRET_KEY = os.environ.get("SECRET_KEY", "change-me")

BACKEND_URL = os.environ.get("BACKEND_URL", "http://localhost:54321")
BACKEND_ANON_KEY = os.environ.get("BACKEND_ANON_KEY", "")
BACKEND_TIMEOUT = int(os.environ.get("BACKEND_TIMEOUT", "30"))

JWT_SECRET_KEY = os.environ.get("BACKEND_JWT_SECRET", "super-secret-jwt-token")
JWT_DECODE_AUDIENCE = "authenticated"

STORAGE_ENDPOINT = os.environ.get("STORAGE_ENDPOINT", BACKEND_URL + "/storage/v1/s3")
STORAGE_REGION = os.environ.get("STORAGE_REGION", "local")
STORAGE_ACCESS_KEY_ID = os.environ.get("STORAGE_ACCESS_KEY_ID", "")
STORAGE_SECRET_KEY = os.environ.get("STORAGE_SECRET_KEY", "")
STORAGE_BUCKET = os.environ.get("STORAGE_BUCKET", "uploads")

WEBHOOK_URL = os.environ.get("WEBHOOK_URL", "http://localhost:5678/webhook/motion")
WEBHOOK_TIMEOUT = 15 * 60

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/2")
SOCKETIO_MESSAGE_QUEUE = os.environ.get("SOCKETIO_MESSAGE_QUEUE", "redis://localhost:6379/1")

UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", os.path.join(os.path.dirname(__file__), "uploads"))
MAX_CONTENT_LENGTH = 200 * 1024 * 1024

REFUND_ON_FAILURE = os.environ.get("REFUND_ON_FAILURE", "false").lower() == "true"
MAINTENANCE_MODE = os.environ.get("MAINTENANCE_MODE", "false").lower() == "true"
