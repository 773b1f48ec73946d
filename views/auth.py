from flask import Blueprint, current_app, flash, render_template, request, redirect, url_for
from backend import AuthError
from helpers import is_unauthenticated, get_backend, set_session_cookies
from router import ViewRouter, AUTH

bp = Blueprint('auth_views', __name__)

def _signed_in(session):
    router = ViewRouter(AUTH)
    router.session_changed(session)
    return set_session_cookies(redirect(url_for(router.endpoint)), session)

@bp.route('/register', methods=['GET', 'POST'])
@is_unauthenticated
def register():
    """
	Registers a new user through the backend.

    On a POST request the first name, last name, email and password are sent
    to the backend sign-up endpoint. When the backend returns a session right
    away the user lands on the dashboard; when it asks for email confirmation the
    user is sent to the login page with a message.

    Returns:
        Response:
            - On GET request: Renders the registration form.
            - On POST request: Redirects to the dashboard, or back to a form with a flash message.
    """
    if request.method == "POST":
        email = (request.form.get("email") or "").strip()
        password = request.form.get("password") or ""
        first_name = (request.form.get("first_name") or "").strip()
        last_name = (request.form.get("last_name") or "").strip()
        if not email or not password:
            flash("Email and password are required.")
            return redirect(url_for("auth_views.register"))
        try:
            session = get_backend().sign_up(email, password, first_name=first_name, last_name=last_name)
        except AuthError as e:
            flash(e.message)
            return redirect(url_for("auth_views.register"))
        if session is None:
            flash("Registration successful! Please check your email to confirm your account.")
            return redirect(url_for("auth_views.login"))
        current_app.logger.info(f"New account registered: {session.user_id}")
        return _signed_in(session)
    return render_template("auth/register.html")

@bp.route('/login', methods=['GET', 'POST'])
@is_unauthenticated
def login():
    """
	Handles user login functionality.

    This function processes login requests. If the request method is POST, it sends the
    email and password to the backend. On success the session is stored in cookies and
    the user is redirected to the dashboard. If the login fails, the backend's message
    is flashed on the login page.

    Returns:
        Response: A redirect response to the dashboard upon successful login, or a
        redirect back to the login page with flash messages for errors.
    """
    if request.method == "POST":
        email = (request.form.get("email") or "").strip()
        password = request.form.get("password") or ""
        try:
            session = get_backend().sign_in_with_password(email, password)
        except AuthError as e:
            flash(e.message)
            return redirect(url_for("auth_views.login"))
        return _signed_in(session)
    return render_template("auth/login.html")
