from flask import Blueprint, request, jsonify, current_app, redirect, abort
from backend import BackendError
from helpers import (
    notify, get_current_session, get_backend, get_redis, api_authenticated,
    set_user_generation_lock, clear_user_generation_lock, put_object, get_public_url
)
from pipeline import GenerationPipeline, GenerationRequest, WebhookClient
from pricing import DEFAULT_QUALITY, QUALITY_MULTIPLIERS, describe_cost
from realtime import publish_change, BALANCES, GENERATIONS
from store import DashboardStore
from uploads import UploadSelection, UploadError, VIDEO, IMAGE

bp = Blueprint('generation', __name__)

UNEXPECTED_FAILURE_MESSAGE = "Something went wrong during the generation. Please try again."

def get_selection(user_id):
    return UploadSelection(get_redis(), user_id, current_app.config["UPLOAD_FOLDER"])

def is_generation_locked(user_id):
    return bool(get_redis().get(f"generation_lock:{user_id}"))

def get_quality(value):
    quality = value or DEFAULT_QUALITY
    if quality not in QUALITY_MULTIPLIERS:
        return None
    return quality

def upload_artifact(key, artifact):
    put_object(key, artifact.read(), artifact.content_type)
    return get_public_url(key)

def build_pipeline(access_token):
    webhook = current_app.extensions.get("webhook") or WebhookClient(
        current_app.config["WEBHOOK_URL"],
        current_app.config["WEBHOOK_TIMEOUT"],
    )
    return GenerationPipeline(
        get_backend(access_token),
        upload_artifact,
        webhook,
        refund_on_failure=current_app.config.get("REFUND_ON_FAILURE", False),
    )

def refresh_and_publish(refresh, table, user_id):
    try:
        refresh()
    except BackendError as e:
        current_app.logger.warning(f"Could not refresh {table} for {user_id}: {e.message}")
    publish_change(get_redis(), table, user_id)

def start_generation(target, *args):
    from app import socketio
    return socketio.start_background_task(target, *args)

@bp.route('/api/uploads/video', methods=["POST"])
@api_authenticated
def upload_video():
    """
	Selects the reference video of the next generation.

    The duration of the video is decoded right away. Videos longer than the
    allowed maximum are rejected, and the previous video selection is cleared as
    well, so a rejected file can never reach the generate step.

    Returns:
        flask.Response: JSON with the selected video and the cost for the requested
        quality tier, or a 400 error with a message to show to the user.
    """
    session = get_current_session()
    if is_generation_locked(session.user_id):
        return jsonify({"error": "A generation is already in progress."}), 409
    file = request.files.get("video")
    if file is None:
        return jsonify({"error": "No video file in the request."}), 400
    quality = get_quality(request.form.get("quality")) or DEFAULT_QUALITY
    selection = get_selection(session.user_id)
    try:
        artifact = selection.select_video(file)
    except UploadError as e:
        selection.clear(VIDEO)
        current_app.logger.info(f"Rejected video upload for {session.user_id}: {e}")
        return jsonify({"error": str(e), "cleared": True}), 400
    return jsonify({
        "video": artifact.to_public_dict(),
        "cost": describe_cost(artifact.duration, quality),
    })

@bp.route('/api/uploads/image', methods=["POST"])
@api_authenticated
def upload_image():
    session = get_current_session()
    if is_generation_locked(session.user_id):
        return jsonify({"error": "A generation is already in progress."}), 409
    file = request.files.get("image")
    if file is None:
        return jsonify({"error": "No image file in the request."}), 400
    try:
        artifact = get_selection(session.user_id).select_image(file)
    except UploadError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"image": artifact.to_public_dict()})

@bp.route('/api/uploads/<kind>', methods=["DELETE"])
@api_authenticated
def clear_upload(kind):
    session = get_current_session()
    if kind not in (VIDEO, IMAGE):
        return jsonify({"error": "Unknown upload kind."}), 404
    if is_generation_locked(session.user_id):
        return jsonify({"error": "A generation is already in progress."}), 409
    get_selection(session.user_id).clear(kind)
    return jsonify({"status": "cleared"})

@bp.route('/api/generation_cost', methods=["GET"])
@api_authenticated
def generation_cost():
    """
	Predicts the credit cost of the next generation.

    Uses the duration stored with the current video selection, so changing the
    quality tier never requires selecting the video again.

    Returns:
        flask.Response: JSON with the duration, multiplier and total credit cost.
    """
    session = get_current_session()
    quality = get_quality(request.args.get("quality"))
    if quality is None:
        return jsonify({"error": "Unknown quality tier."}), 400
    duration = get_selection(session.user_id).duration
    return jsonify(describe_cost(duration, quality))

@bp.route('/api/generate', methods=["POST"])
@api_authenticated
def api_generate():
    """
	Starts a motion transfer generation for the current selection.

    The precondition check (both files selected, enough credits in the locally
    held balance) runs before anything else and makes no remote call. While a
    generation is running the action is locked for the user. The remaining
    stages run in a background task and report back over the user's socket room.

    Returns:
        flask.Response: 202 with the cost when queued, 400 with a message when the
        precondition fails (insufficient credits add "redirect": "pricing"), or
        409 while another generation is in flight.
    """
    session = get_current_session()
    data = request.get_json(silent=True) or {}
    quality = get_quality(data.get("quality"))
    if quality is None:
        return jsonify({"error": "Unknown quality tier."}), 400
    prompt = (data.get("prompt") or "").strip()

    selection = get_selection(session.user_id)
    store = DashboardStore(get_redis(), session.user_id)
    generation_request = GenerationRequest(
        user_id=session.user_id,
        prompt=prompt,
        quality=quality,
        cost=describe_cost(selection.duration, quality)["total_credit_cost"],
        video=selection.video,
        image=selection.image,
    )
    pipeline = build_pipeline(session.access_token)
    result = pipeline.prepare(generation_request, store.balance)
    if result.failure:
        body = result.to_dict()
        body["error"] = result.message
        return jsonify(body), 400

    if not set_user_generation_lock(session.user_id):
        return jsonify({"error": "A generation is already in progress."}), 409
    try:
        start_generation(run_generation, current_app._get_current_object(), pipeline, generation_request, result, session.access_token)
    except Exception as e:
        clear_user_generation_lock(session.user_id)
        current_app.logger.error(f"Could not start generation for {session.user_id}: {e}")
        return jsonify({"error": "Generation could not be started."}), 500
    return jsonify({"status": "queued", "cost": generation_request.cost}), 202

def run_generation(app, pipeline, generation_request, result, access_token):
    """
	Runs the post-precondition stages of a generation and reports the outcome.

    Once credits were spent the balance snapshot is re-fetched and the change is
    published, as is the new generation row on success. Whatever happens, the
    staged files are dropped and the generation lock is released.
    """
    user_id = generation_request.user_id
    with app.app_context():
        try:
            notify("generation_started", {"cost": generation_request.cost}, user_id)
            result = pipeline.execute(generation_request, result)
            store = DashboardStore(get_redis(), user_id, get_backend(access_token))
            if result.credits_spent:
                refresh_and_publish(store.refresh_user_data, BALANCES, user_id)
            if result.ok:
                refresh_and_publish(store.refresh_generations, GENERATIONS, user_id)
                notify("generation_complete", result.to_dict(), user_id)
            else:
                if result.spent_not_delivered:
                    app.logger.warning(f"Generation for {user_id} spent {result.cost} credits without delivering a video")
                notify("generation_failed", result.to_dict(), user_id)
            return result
        except Exception:
            app.logger.exception(f"Generation for {user_id} failed unexpectedly")
            notify("generation_failed", {"ok": False, "message": UNEXPECTED_FAILURE_MESSAGE}, user_id)
            return None
        finally:
            get_selection(user_id).clear()
            clear_user_generation_lock(user_id)

@bp.route('/api/generations', methods=["GET"])
@api_authenticated
def list_generations():
    session = get_current_session()
    store = DashboardStore(get_redis(), session.user_id, get_backend(session.access_token))
    try:
        generations = store.refresh_generations()
    except BackendError as e:
        return jsonify({"error": e.message}), 502
    return jsonify({"generations": [g.to_dict() for g in generations]})

@bp.route('/api/generations/<generation_id>/download', methods=["GET"])
@api_authenticated
def download_generation(generation_id):
    session = get_current_session()
    try:
        row = get_backend(session.access_token).select("generations", {"id": generation_id, "user_id": session.user_id}, single=True)
    except BackendError as e:
        return jsonify({"error": e.message}), 502
    if not row or not row.get("output_video_url"):
        abort(404)
    return redirect(row["output_video_url"])
