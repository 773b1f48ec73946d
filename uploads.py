import json
import logging
import os
import subprocess
import uuid
from dataclasses import dataclass, asdict
from typing import Optional

MAX_VIDEO_DURATION = 30
ALLOWED_VIDEO_EXTENSIONS = {".mp4", ".mov", ".m4v", ".webm", ".avi", ".mkv"}
ALLOWED_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}

VIDEO = "video"
IMAGE = "image"

class UploadError(Exception):
    pass

@dataclass
class Artifact:
    kind: str
    path: str
    filename: str
    content_type: str
    duration: Optional[float] = None

    @property
    def extension(self):
        return os.path.splitext(self.filename)[1].lower()

    def read(self):
        with open(self.path, "rb") as f:
            return f.read()

    def to_public_dict(self):
        return {"kind": self.kind, "filename": self.filename, "duration": self.duration}

def probe_video_duration(path):
    """
	Decodes the duration of a video file with ffprobe.

    Args:
        path (str): Path of the video on local disk.

    Returns:
        float: Duration in seconds.

    Raises:
        UploadError: If ffprobe is missing, fails, or prints no duration.
    """
    try:
        p = subprocess.run(
            ["ffprobe", "-v", "error", "-show_entries", "format=duration",
             "-of", "default=noprint_wrappers=1:nokey=1", path],
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=60
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logging.error(f"ffprobe could not run on {path}: {e}")
        raise UploadError("Could not read the video duration.")
    if p.returncode != 0:
        logging.warning(f"ffprobe failed on {path}: {p.stderr.strip()}")
        raise UploadError("Could not read the video duration.")
    try:
        return float(p.stdout.strip())
    except ValueError:
        raise UploadError("Could not read the video duration.")

def _remove(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass

class UploadSelection:
    """
	The video and image an identity has picked for its next generation.

    Selected files are staged under the upload folder and described in Redis, so
    the cost endpoint and the generation pipeline can use the decoded duration
    without reading the video again. Replacing or clearing a selection deletes
    the staged file.

    Args:
        redis_client (redis.Redis): Client holding the selection description.
        user_id (str): Identity the selection belongs to.
        folder (str): Root upload folder; files land in a per-identity subfolder.
    """
    def __init__(self, redis_client, user_id, folder):
        self.redis = redis_client
        self.user_id = user_id
        self.folder = os.path.join(folder, str(user_id))

    @property
    def key(self):
        return f"upload_selection:{self.user_id}"

    def _load(self):
        raw = self.redis.get(self.key)
        return json.loads(raw) if raw else {}

    def _store(self, selection):
        if selection:
            self.redis.set(self.key, json.dumps(selection))
        else:
            self.redis.delete(self.key)

    def _get(self, kind):
        data = self._load().get(kind)
        return Artifact(**data) if data else None

    @property
    def video(self):
        return self._get(VIDEO)

    @property
    def image(self):
        return self._get(IMAGE)

    @property
    def duration(self):
        video = self.video
        return video.duration if video else None

    def _stage(self, kind, file_storage, allowed):
        filename = file_storage.filename or ""
        extension = os.path.splitext(filename)[1].lower()
        if not filename:
            raise UploadError(f"No {kind} file selected.")
        if extension not in allowed:
            raise UploadError(f"Unsupported {kind} type: {extension or 'unknown'}.")
        self.clear(kind)
        os.makedirs(self.folder, exist_ok=True)
        path = os.path.join(self.folder, f"{kind}-{uuid.uuid4().hex}{extension}")
        file_storage.save(path)
        return Artifact(
            kind=kind,
            path=path,
            filename=filename,
            content_type=file_storage.mimetype or "application/octet-stream",
        )

    def _select(self, artifact):
        selection = self._load()
        selection[artifact.kind] = asdict(artifact)
        self._store(selection)
        return artifact

    def select_video(self, file_storage, probe=None):
        """
	Stages a reference video after checking its duration.

        Any previously selected video is dropped first. A video longer than
        MAX_VIDEO_DURATION seconds is deleted again and never becomes part of the
        selection.

        Args:
            file_storage (werkzeug.datastructures.FileStorage): The uploaded file.
            probe (Callable, optional): Duration decoder, probe_video_duration by default.

        Returns:
            Artifact: The staged video including its duration.

        Raises:
            UploadError: If the type is not allowed, decoding fails or the video is too long.
        """
        probe = probe or probe_video_duration
        artifact = self._stage(VIDEO, file_storage, ALLOWED_VIDEO_EXTENSIONS)
        try:
            artifact.duration = probe(artifact.path)
        except UploadError:
            _remove(artifact.path)
            raise
        if artifact.duration > MAX_VIDEO_DURATION:
            _remove(artifact.path)
            raise UploadError(
                f"The reference video must be {MAX_VIDEO_DURATION} seconds or shorter "
                f"(selected video is {artifact.duration:.1f} seconds)."
            )
        return self._select(artifact)

    def select_image(self, file_storage):
        return self._select(self._stage(IMAGE, file_storage, ALLOWED_IMAGE_EXTENSIONS))

    def clear(self, kind=None):
        selection = self._load()
        kinds = [kind] if kind else [VIDEO, IMAGE]
        for k in kinds:
            data = selection.pop(k, None)
            if data:
                _remove(data["path"])
        self._store(selection)
