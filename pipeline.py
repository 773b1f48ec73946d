import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional
import eventlet
import requests
from backend import BackendError
from models import Generation
from models.Generation import STATUS_COMPLETED
from uploads import Artifact

PRECONDITION = "precondition"
SPEND = "spend"
UPLOAD_VIDEO = "upload_video"
UPLOAD_IMAGE = "upload_image"
WEBHOOK = "webhook"
RECORD = "record"
REFUND = "refund"

SPEND_DESCRIPTION = "Motion Transfer Generation"
REFUND_DESCRIPTION = "Refund: Motion Transfer Generation"
OUTPUT_URL_FIELDS = ("output_url", "output", "video_url", "url")
RESULTS_ANCHOR = "results-section"

STAGE_MESSAGES = {
    SPEND: "Credits could not be spent or the balance is insufficient.",
    UPLOAD_VIDEO: "The reference video could not be uploaded.",
    UPLOAD_IMAGE: "The character image could not be uploaded.",
    WEBHOOK: "The generation service failed to produce a video.",
    RECORD: "The video was generated but could not be saved to your library.",
}
TIMEOUT_MESSAGE = "The generation did not finish within 15 minutes and was cancelled."

class WebhookError(Exception):
    pass

class WebhookTimeout(WebhookError):
    pass

@dataclass
class StageResult:
    stage: str
    ok: bool
    value: Any = None
    error: Optional[str] = None
    timed_out: bool = False

@dataclass
class GenerationRequest:
    user_id: str
    prompt: str
    quality: str
    cost: int
    video: Optional[Artifact]
    image: Optional[Artifact]
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def storage_key(self, artifact):
        return f"{self.user_id}/{self.timestamp}/{artifact.kind}{artifact.extension}"

@dataclass
class PipelineResult:
    """
	Outcome of one generation attempt as the ordered list of stage results.

    The chain stops at the first failed stage, so the last entry is either the
    failure or the successful record stage. `spent_not_delivered` marks the
    attempts that consumed credits without producing a generation row.
    """
    cost: int
    stages: List[StageResult] = field(default_factory=list)
    redirect: Optional[str] = None
    scroll_to: Optional[str] = None

    def add(self, stage_result):
        self.stages.append(stage_result)
        return stage_result

    def _find(self, stage):
        for stage_result in self.stages:
            if stage_result.stage == stage:
                return stage_result
        return None

    @property
    def failure(self):
        for stage_result in self.stages:
            if not stage_result.ok and stage_result.stage != REFUND:
                return stage_result
        return None

    @property
    def ok(self):
        record = self._find(RECORD)
        return self.failure is None and record is not None and record.ok

    @property
    def failed_stage(self):
        failure = self.failure
        return failure.stage if failure else None

    @property
    def timed_out(self):
        failure = self.failure
        return bool(failure and failure.timed_out)

    @property
    def message(self):
        failure = self.failure
        if not failure:
            return None
        if failure.timed_out:
            return TIMEOUT_MESSAGE
        if failure.stage == PRECONDITION:
            return failure.error
        return STAGE_MESSAGES.get(failure.stage, "Generation failed.")

    @property
    def credits_spent(self):
        spend = self._find(SPEND)
        return bool(spend and spend.ok)

    @property
    def refunded(self):
        refund = self._find(REFUND)
        return bool(refund and refund.ok)

    @property
    def generation(self):
        record = self._find(RECORD)
        return record.value if record and record.ok else None

    @property
    def spent_not_delivered(self):
        return self.credits_spent and self.generation is None and not self.refunded

    def to_dict(self):
        return {
            "ok": self.ok,
            "cost": self.cost,
            "failed_stage": self.failed_stage,
            "message": self.message,
            "timed_out": self.timed_out,
            "credits_spent": self.credits_spent,
            "refunded": self.refunded,
            "spent_not_delivered": self.spent_not_delivered,
            "generation": self.generation.to_dict() if self.generation else None,
            "redirect": self.redirect,
            "scroll_to": self.scroll_to,
        }

def extract_output_url(body):
    if isinstance(body, list) and body:
        body = body[0]
    if not isinstance(body, dict):
        return None
    for key in OUTPUT_URL_FIELDS:
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None

class WebhookClient:
    """
	Calls the external generation webhook.

    The webhook receives the prompt, the public URLs of both inputs and the
    quality tier, and answers with the URL of the generated video. It is called
    once per attempt and never retried. The whole call, body included, is
    cancelled once `timeout` seconds have passed. An unreachable webhook is a
    plain failure, not a timeout.

    Args:
        url (str): Webhook endpoint.
        timeout (int): Seconds to wait for the response.
        http (requests.Session, optional): Session used to send the request.
    """
    def __init__(self, url, timeout, http=None):
        self.url = url
        self.timeout = timeout
        self.http = http or requests.Session()

    def __call__(self, payload):
        deadline = WebhookTimeout(f"No response from webhook within {self.timeout} seconds.")
        with eventlet.Timeout(self.timeout, deadline):
            try:
                response = self.http.post(self.url, json=payload, timeout=(10, self.timeout))
            except requests.ConnectionError as e:
                raise WebhookError(f"Webhook unreachable: {e}")
            except requests.Timeout:
                raise deadline
            except requests.RequestException as e:
                raise WebhookError(str(e))
            if not response.ok:
                raise WebhookError(f"Webhook returned HTTP {response.status_code}.")
            try:
                body = response.json()
            except ValueError:
                raise WebhookError("Webhook returned a malformed response.")
        output_url = extract_output_url(body)
        if not output_url:
            raise WebhookError("Webhook response did not contain an output URL.")
        return output_url

def check_preconditions(request, balance):
    """
	Checks that a generation may start, without calling any remote service.

    Args:
        request (GenerationRequest): The attempt to check.
        balance (Balance or None): Locally held balance of the identity.

    Returns:
        StageResult: A failed result carries the user facing message; a failed
        balance check carries "pricing" as its value so the caller can send the
        user to the credit packages.
    """
    if request.video is None or request.image is None:
        return StageResult(PRECONDITION, False, error="Please upload a reference video and a character image.")
    if balance is None or not balance.covers(request.cost):
        return StageResult(PRECONDITION, False, value="pricing", error="Insufficient credits. Please top up your balance.")
    return StageResult(PRECONDITION, True)

class GenerationPipeline:
    """
	Runs one motion transfer generation as a strictly ordered chain of stages.

    precondition -> spend -> upload_video -> upload_image -> webhook -> record

    Every stage returns a StageResult and the chain stops at the first failure.
    Spending credits is the only guard before anything irreversible happens: a
    failed spend leaves no files and no rows behind. Stages after the spend are
    not rolled back when a later stage fails. With `refund_on_failure` the spent
    credits are added back through the add_credits procedure instead.

    Args:
        backend (BackendClient): Client acting as the identity.
        upload (Callable): upload(key, artifact) -> public URL of the stored file.
        webhook (Callable): webhook(payload) -> output URL; raises WebhookError.
        refund_on_failure (bool, optional): Refund credits when a post-spend stage fails.
    """
    def __init__(self, backend, upload, webhook, refund_on_failure=False):
        self.backend = backend
        self.upload = upload
        self.webhook = webhook
        self.refund_on_failure = refund_on_failure

    def prepare(self, request, balance):
        result = PipelineResult(cost=request.cost)
        stage_result = result.add(check_preconditions(request, balance))
        if not stage_result.ok:
            result.redirect = stage_result.value
        return result

    def run(self, request, balance):
        result = self.prepare(request, balance)
        if result.failure:
            return result
        return self.execute(request, result)

    def execute(self, request, result=None):
        result = result or PipelineResult(cost=request.cost)
        stages = (self._spend, self._upload_video, self._upload_image, self._call_webhook, self._record)
        context = {}
        for stage in stages:
            stage_result = result.add(stage(request, context))
            if not stage_result.ok:
                logging.warning(f"Generation for {request.user_id} stopped at {stage_result.stage}: {stage_result.error}")
                self._compensate(request, result)
                return result
            context[stage_result.stage] = stage_result.value
        result.scroll_to = RESULTS_ANCHOR
        return result

    def _spend(self, request, context):
        try:
            success = self.backend.spend_credits(request.cost, SPEND_DESCRIPTION)
        except BackendError as e:
            return StageResult(SPEND, False, error=e.message)
        if not success:
            return StageResult(SPEND, False, error="spend_credits returned false")
        return StageResult(SPEND, True, value=request.cost)

    def _upload(self, stage, request, artifact):
        try:
            url = self.upload(request.storage_key(artifact), artifact)
        except Exception as e:
            logging.error(f"Upload of {artifact.kind} for {request.user_id} failed: {e}")
            return StageResult(stage, False, error=str(e))
        return StageResult(stage, True, value=url)

    def _upload_video(self, request, context):
        return self._upload(UPLOAD_VIDEO, request, request.video)

    def _upload_image(self, request, context):
        return self._upload(UPLOAD_IMAGE, request, request.image)

    def _call_webhook(self, request, context):
        payload = {
            "prompt": request.prompt,
            "image": context[UPLOAD_IMAGE],
            "video": context[UPLOAD_VIDEO],
            "quality": request.quality,
        }
        try:
            output_url = self.webhook(payload)
        except WebhookTimeout as e:
            return StageResult(WEBHOOK, False, error=str(e), timed_out=True)
        except WebhookError as e:
            return StageResult(WEBHOOK, False, error=str(e))
        return StageResult(WEBHOOK, True, value=output_url)

    def _record(self, request, context):
        generation = Generation(
            id=None,
            user_id=request.user_id,
            prompt=request.prompt,
            input_video_url=context[UPLOAD_VIDEO],
            input_image_url=context[UPLOAD_IMAGE],
            output_video_url=context[WEBHOOK],
            status=STATUS_COMPLETED,
        )
        try:
            row = self.backend.insert("generations", generation.to_row())
        except BackendError as e:
            return StageResult(RECORD, False, error=e.message)
        if row:
            generation = Generation.from_row(row)
        return StageResult(RECORD, True, value=generation)

    def _compensate(self, request, result):
        if not result.credits_spent:
            return
        if not self.refund_on_failure:
            logging.warning(f"{request.cost} credits spent by {request.user_id} without a generation")
            return
        try:
            self.backend.add_credits(request.cost, REFUND_DESCRIPTION)
        except BackendError as e:
            logging.error(f"Refund of {request.cost} credits for {request.user_id} failed: {e.message}")
            result.add(StageResult(REFUND, False, error=e.message))
            return
        result.add(StageResult(REFUND, True, value=request.cost))
