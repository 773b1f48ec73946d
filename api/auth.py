import base64
import hashlib
import secrets
from flask import Blueprint, current_app, flash, request, redirect, url_for, session as flask_session
from backend import AuthError
from helpers import (
    is_unauthenticated, is_authenticated, get_current_session, get_backend, get_redis,
    set_session_cookies, clear_session_cookies
)
from router import ViewRouter, AUTH, APP
from store import DashboardStore
from uploads import UploadSelection

bp = Blueprint('auth', __name__)

def make_code_verifier():
    return secrets.token_urlsafe(64)

def make_code_challenge(code_verifier):
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

@bp.route('/auth/oauth/<provider>', methods=['GET'])
@is_unauthenticated
def oauth_login(provider):
    """
	Starts an OAuth sign-in with the given provider.

    A PKCE code verifier is kept in the Flask session and its challenge is sent
    to the backend, which redirects back to this application's own callback
    once the provider has authenticated the user.

    Args:
        provider (str): OAuth provider name known to the backend, e.g. "google".

    Returns:
        Response: A redirect to the backend authorize endpoint.
    """
    code_verifier = make_code_verifier()
    flask_session["code_verifier"] = code_verifier
    redirect_to = url_for("auth.oauth_callback", _external=True)
    url = get_backend().get_oauth_url(provider, redirect_to, make_code_challenge(code_verifier))
    return redirect(url)

@bp.route('/auth/callback', methods=['GET'])
def oauth_callback():
    """
	Completes an OAuth sign-in.

    Exchanges the authorization code for a session and stores it in the cookies.
    Any error reported by the provider or the backend is flashed on the login page.

    Returns:
        Response: A redirect to the dashboard on success, otherwise to the login page.
    """
    error = request.args.get("error_description") or request.args.get("error")
    code = request.args.get("code")
    code_verifier = flask_session.pop("code_verifier", None)
    if error or not code or not code_verifier:
        flash(error or "Sign-in was cancelled or has expired. Please try again.")
        return redirect(url_for("auth_views.login"))
    try:
        session = get_backend().exchange_code_for_session(code, code_verifier)
    except AuthError as e:
        current_app.logger.warning(f"OAuth code exchange failed: {e.message}")
        flash(e.message)
        return redirect(url_for("auth_views.login"))
    router = ViewRouter(AUTH)
    router.session_changed(session)
    return set_session_cookies(redirect(url_for(router.endpoint)), session)

@bp.route('/logout')
@is_authenticated
def logout():
    """
	Logs out the user.

    The backend session is revoked, the dashboard state and any staged uploads
    of the user are dropped and the session cookies are deleted.

    Returns:
        Response: A redirect to the landing page.
    """
    session = get_current_session()
    try:
        get_backend(session.access_token).sign_out()
    except AuthError as e:
        current_app.logger.warning(f"Backend sign-out failed for {session.user_id}: {e.message}")
    DashboardStore(get_redis(), session.user_id).clear()
    UploadSelection(get_redis(), session.user_id, current_app.config["UPLOAD_FOLDER"]).clear()
    router = ViewRouter(APP)
    router.logout()
    return clear_session_cookies(redirect(url_for(router.endpoint)))
