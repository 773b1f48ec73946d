from flask import Blueprint, current_app, flash, request, redirect, url_for, jsonify
from backend import BackendError
from helpers import get_current_session, get_backend, get_redis, is_authenticated, api_authenticated
from models import CreditPackage
from realtime import publish_change, BALANCES
from store import DashboardStore

bp = Blueprint('profile', __name__)

@bp.route('/update_profile', methods=["POST"])
@is_authenticated
def update_profile():
    """
	Update the user's profile information based on the submitted form data.

    Only the first and last name can be changed; the email address belongs to the
    sign-in identity and is read-only here. The result is reported with a flash
    message on the settings tab.

    Returns:
        Redirect: Redirects to the settings tab of the dashboard.
    """
    session = get_current_session()
    values = {
        "first_name": (request.form.get("first_name") or "").strip(),
        "last_name": (request.form.get("last_name") or "").strip(),
    }
    try:
        get_backend(session.access_token).update("profiles", {"id": session.user_id}, values)
        flash("Profile updated successfully.")
    except BackendError as e:
        current_app.logger.error(f"Profile update failed for {session.user_id}: {e.message}")
        flash(f"Profile could not be saved: {e.message}")
    return redirect(url_for('dashboard', tab="settings"))

@bp.route('/api/credit_packages', methods=["GET"])
@api_authenticated
def credit_packages():
    session = get_current_session()
    store = DashboardStore(get_redis(), session.user_id, get_backend(session.access_token))
    try:
        packages = store.refresh_packages()
    except BackendError as e:
        return jsonify({"error": e.message}), 502
    return jsonify({"packages": [vars(package) for package in packages]})

@bp.route('/api/buy_credits/<int:package_id>', methods=["POST"])
@api_authenticated
def buy_credits(package_id):
    """
	Adds the credits of a catalog package to the user's balance.

    Payment is simulated: the package is looked up in the catalog and its credits
    are added through the add_credits remote procedure, which the backend runs
    atomically and records for audit. The balance change is then
    published to the change feed of the user's open dashboards.

    Args:
        package_id (int): The ID of the credit package to buy.

    Returns:
        Response: A JSON response with the new balance, a 404 error for an unknown
        package or a 502 error when the backend rejects the purchase.
    """
    session = get_current_session()
    backend = get_backend(session.access_token)
    try:
        row = backend.select("credit_packages", {"id": package_id}, single=True)
        if not row:
            return jsonify({"error": "Credit package not found."}), 404
        package = CreditPackage.from_row(row)
        backend.add_credits(package.credits, f"Purchase: {package.name}")
    except BackendError as e:
        current_app.logger.error(f"Credit purchase failed for {session.user_id}: {e.message}")
        return jsonify({"error": f"Credits could not be added: {e.message}"}), 502

    credits = None
    store = DashboardStore(get_redis(), session.user_id, backend)
    try:
        credits = store.refresh_user_data().credits
    except BackendError as e:
        current_app.logger.warning(f"Balance refresh after purchase failed for {session.user_id}: {e.message}")
    publish_change(get_redis(), BALANCES, session.user_id, {"added": package.credits})
    return jsonify({"status": "success", "added": package.credits, "credits": credits})
