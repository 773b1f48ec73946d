import os
from flask import Flask, jsonify, render_template, get_flashed_messages, redirect, url_for, request, flash, current_app
from flask_jwt_extended import JWTManager
from flask_socketio import SocketIO, join_room
import redis
from backend import BackendError
from helpers import is_landing, is_authenticated, get_current_session, get_backend, get_redis
from pricing import QUALITY_MULTIPLIERS, DEFAULT_QUALITY, calculate_generation_cost
from realtime import ChangeSubscription, BALANCES, GENERATIONS
from store import DashboardStore
from uploads import UploadSelection, MAX_VIDEO_DURATION

jwt = JWTManager()
socketio = SocketIO()

active_subscriptions = {}

DASHBOARD_TABS = ("generate", "pricing", "settings")

def create_app(config=None):
    """
	Creates and configures the Flask application.

    Configuration is read from config.py first and then updated with `config`,
    which tests use to point the app at in-memory collaborators.

    Args:
        config (dict, optional): Configuration overrides.

    Returns:
        Flask: The configured application.
    """
    app = Flask(__name__)
    app.config.from_pyfile('config.py')
    if config:
        app.config.update(config)

    jwt.init_app(app)
    socketio.init_app(app, cors_allowed_origins='*', message_queue=app.config.get("SOCKETIO_MESSAGE_QUEUE"))
    if "redis" not in app.extensions:
        app.extensions["redis"] = redis.StrictRedis.from_url(app.config["REDIS_URL"], decode_responses=True)

    from api.generation import bp as generation_bp
    from api.auth import bp as auth_bp
    from api.profile import bp as profile_bp
    from views.auth import bp as auth_views_bp

    app.register_blueprint(generation_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(profile_bp)
    app.register_blueprint(auth_views_bp)

    app.add_url_rule('/', 'index', index)
    app.add_url_rule('/dashboard', 'dashboard', dashboard)
    app.add_url_rule('/maintenance', 'maintenance', maintenance)
    app.before_request(check_maintenance_mode)
    app.context_processor(inject_flashed_messages)

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)
    return app

def inject_flashed_messages():
    messages = get_flashed_messages()
    return dict(messages=messages)

def check_maintenance_mode():
    """
	Blocks requests while the site is in maintenance mode.

    API requests receive a 503 JSON error and pages are redirected to the
    maintenance page. Static files and the maintenance page itself stay reachable.
    """
    if not current_app.config.get("MAINTENANCE_MODE"):
        return
    if request.path.startswith("/api"):
        return jsonify({"error": "Site is under maintenance."}), 503
    if request.endpoint != "maintenance" and not request.path.startswith('/static'):
        return redirect(url_for("maintenance"))

def maintenance():
    if not current_app.config.get("MAINTENANCE_MODE"):
        return redirect(url_for("index"))
    message = "The site is currently undergoing maintenance. Please check back later."
    return render_template("maintenance.html", message=message), 503

@is_landing
def index():
    return render_template("index.html")

@is_authenticated
def dashboard():
    """
	Render the dashboard of the signed-in user.

    The dashboard store is refreshed from the backend on every page load: profile,
    balance, credit packages and generations. The cost shown next to the generate
    button comes from the duration of the currently selected video and the chosen
    quality tier.

    Returns:
        str: Rendered HTML of the dashboard template.
    """
    session = get_current_session()
    store = DashboardStore(get_redis(), session.user_id, get_backend(session.access_token))
    try:
        store.refresh_all()
    except BackendError as e:
        current_app.logger.error(f"Dashboard refresh failed for {session.user_id}: {e.message}")
        flash("Your account data could not be loaded. Please try again.")

    tab = request.args.get("tab", "generate")
    if tab not in DASHBOARD_TABS:
        tab = "generate"
    quality = request.args.get("quality", DEFAULT_QUALITY)
    if quality not in QUALITY_MULTIPLIERS:
        quality = DEFAULT_QUALITY
    selection = UploadSelection(get_redis(), session.user_id, current_app.config["UPLOAD_FOLDER"])

    return render_template("dashboard.html",
                           tab=tab,
                           identity=session,
                           profile=store.profile,
                           balance=store.balance,
                           packages=store.packages,
                           generations=store.generations,
                           selection=selection,
                           quality=quality,
                           qualities=list(QUALITY_MULTIPLIERS),
                           cost=calculate_generation_cost(selection.duration, quality),
                           max_video_duration=MAX_VIDEO_DURATION)

def watch_changes(app, subscription, access_token, sid):
    """
	Re-fetches dashboard state whenever the change feed reports a change.

    Runs as a background task for one connected dashboard socket. Every
    notification triggers a full re-fetch of the matching part of the dashboard
    store, whatever the notification payload says, and the fresh state is sent
    to that socket. The subscription is released when the socket disconnects.
    """
    with app.app_context():
        user_id = subscription.user_id
        store = DashboardStore(get_redis(), user_id, get_backend(access_token))

        def refresh_balance():
            balance = store.refresh_user_data()
            socketio.emit("balance_updated", {"credits": balance.credits}, to=sid)

        def refresh_generations():
            generations = store.refresh_generations()
            socketio.emit("generations_updated", {"generations": [g.to_dict() for g in generations]}, to=sid)

        handlers = {BALANCES: refresh_balance, GENERATIONS: refresh_generations}
        with subscription:
            for event in subscription.listen():
                try:
                    subscription.dispatch(event, handlers)
                except BackendError as e:
                    app.logger.warning(f"Realtime refresh of {event.kind} for {user_id} failed: {e.message}")
        app.logger.info(f"Change feed for {user_id} released.")

@socketio.on("connect")
def on_connect():
    """
	Handles the connection of a dashboard socket.

    The socket joins the room of its identity and gets its own change feed
    subscription. Connections without a valid session are refused.
    """
    session = get_current_session()
    if not session:
        return False
    join_room(session.user_id)
    subscription = ChangeSubscription(get_redis(), session.user_id)
    active_subscriptions[request.sid] = subscription
    socketio.start_background_task(watch_changes, current_app._get_current_object(), subscription, session.access_token, request.sid)

@socketio.on("disconnect")
def on_disconnect(*args):
    subscription = active_subscriptions.pop(request.sid, None)
    if subscription:
        subscription.stop()
