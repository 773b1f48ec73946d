import logging
from functools import wraps
from flask import request, redirect, url_for, jsonify, current_app
from flask_jwt_extended import decode_token
import boto3
from backend import BackendClient
from models import Session
from router import ViewRouter, LANDING, AUTH, APP

def get_redis():
    return current_app.extensions["redis"]

def get_backend(access_token=None):
    """
	Builds a backend client acting on behalf of the given access token.

    The application may register its own factory under the "backend_factory"
    extension key; otherwise a BackendClient is built from the app config.

    Args:
        access_token (str, optional): Access token of the caller. Anonymous when omitted.

    Returns:
        BackendClient: A client scoped to the caller.
    """
    factory = current_app.extensions.get("backend_factory")
    if factory:
        return factory(access_token)
    return BackendClient(
        current_app.config["BACKEND_URL"],
        current_app.config["BACKEND_ANON_KEY"],
        access_token=access_token,
        timeout=current_app.config.get("BACKEND_TIMEOUT", 30),
    )

def get_s3_client():
    client = current_app.extensions.get("s3")
    if client is None:
        client = boto3.client('s3',
            region_name=current_app.config.get("STORAGE_REGION"),
            endpoint_url=current_app.config.get("STORAGE_ENDPOINT"),
            aws_access_key_id=current_app.config.get("STORAGE_ACCESS_KEY_ID"),
            aws_secret_access_key=current_app.config.get("STORAGE_SECRET_KEY"))
        current_app.extensions["s3"] = client
    return client

def put_object(key, data, content_type):
    """
	Uploads a file to the storage bucket.

    Args:
        key (str): The key under which the file will be stored in the bucket.
        data (bytes): The binary content of the file.
        content_type (str): MIME type stored with the object.

    Returns:
        str: The key of the uploaded file.

    Raises:
        botocore.exceptions.ClientError: If the upload fails due to an S3 client error.
    """
    get_s3_client().put_object(
        Bucket=current_app.config.get("STORAGE_BUCKET"),
        Key=key,
        Body=data,
        ContentType=content_type
    )
    return key

def get_public_url(key):
    base_url = current_app.config["BACKEND_URL"].rstrip("/")
    bucket = current_app.config.get("STORAGE_BUCKET")
    return f"{base_url}/storage/v1/object/public/{bucket}/{key}"

def set_user_generation_lock(user_id, expire=None):
    """
	Sets a generation lock for a user.

    This function attempts to set a lock for a user identified by `user_id` to prevent
    the generate action from being triggered again while an attempt is in flight.
    The lock expires on its own shortly after the webhook timeout.

    Args:
        user_id (str): The unique identifier of the user for whom the lock is being set.
        expire (int, optional): The expiration time for the lock in seconds.

    Returns:
        bool: True if the lock was successfully set, False otherwise.
    """
    if expire is None:
        expire = current_app.config["WEBHOOK_TIMEOUT"] + 120
    key = f"generation_lock:{user_id}"
    return bool(get_redis().set(key, "1", ex=expire, nx=True))

def clear_user_generation_lock(user_id):
    key = f"generation_lock:{user_id}"
    get_redis().delete(key)

def notify(event, payload, user_id):
    """
	Sends an event to every socket of a user via WebSocket.

    Args:
        event (str): Name of the Socket.IO event.
        payload (dict): JSON serialisable event body.
        user_id (str): The ID of the user whose room receives the event.

    Returns:
        None
    """
    from app import socketio
    socketio.emit(event, payload, room=user_id)

def get_current_session():
    """
	Retrieves the current session based on the access token stored in the cookies.

    The access token is issued by the backend and signed with its JWT secret, so it
    can be verified locally without a round trip. If the token is missing, expired
    or invalid, the function returns None.

    Returns:
        Session or None: The current session if the token is valid, otherwise None.
    """
    token = request.cookies.get("access_token")
    if not token:
        return None
    try:
        decoded_token = decode_token(token)
    except Exception as e:
        logging.info(f"Rejected access token: {e}")
        return None
    user_id = decoded_token.get("sub")
    if not user_id:
        logging.warning("Token decoded but no user id found.")
        return None
    return Session(
        access_token=token,
        refresh_token=request.cookies.get("refresh_token"),
        user_id=user_id,
        email=decoded_token.get("email"),
        expires_at=decoded_token.get("exp"),
    )

def set_session_cookies(response, session):
    response.set_cookie("access_token", session.access_token, httponly=True, samesite="Lax")
    if session.refresh_token:
        response.set_cookie("refresh_token", session.refresh_token, httponly=True, samesite="Lax")
    return response

def clear_session_cookies(response):
    response.delete_cookie("access_token")
    response.delete_cookie("refresh_token")
    return response

def _routed(view):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            router = ViewRouter.resolve(view, get_current_session())
            if router.view != view:
                return redirect(url_for(router.endpoint))
            return func(*args, **kwargs)
        return wrapper
    return decorator

# Signed-in users are sent to the dashboard, everyone else to the landing page.
is_landing = _routed(LANDING)
is_unauthenticated = _routed(AUTH)
is_authenticated = _routed(APP)

def api_authenticated(func):
    """
	Decorator for JSON endpoints that require a session.

    Responds with a 401 JSON error instead of redirecting when no valid session exists.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not get_current_session():
            return jsonify({"error": "Authentication required."}), 401
        return func(*args, **kwargs)
    return wrapper
