"""Garmin trainer conversion jobs.

Lifecycle: pending -> processing -> completed | failed.

- Creation reserves one conversion credit before the row exists; no credit,
  no job and no AI call.
- Processing starts with an atomic pending -> processing claim, so the
  request-triggered background task and the cron batch never run the same
  job twice.
- Every failure path goes through _release_job_credit, which refunds at most
  once per job (credit_refunded flag flipped by a conditional UPDATE).
"""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any

from loguru import logger
from sqlalchemy import or_, select, update

from garmin_trainer.ai.client import GenerationRequest, GenerationResult, get_garmin_ai_client
from garmin_trainer.ai.model_config import GARMIN_TRAINER_FEATURE, get_ai_model_candidates
from garmin_trainer.ai.prompts.loader import (
    DEFAULT_SYSTEM_PROMPT,
    build_final_prompt,
    correction_prompt,
    load_prompt_template,
    owner_instruction,
)
from garmin_trainer.config.settings import settings
from garmin_trainer.core.errors import (
    GarminApiError,
    GarminConversionError,
    GarminNotConnectedError,
    InsufficientCreditsError,
)
from garmin_trainer.db.models import GarminTrainerJob
from garmin_trainer.db.session import get_session
from garmin_trainer.exercises.catalog import build_exercise_catalog_snippet
from garmin_trainer.exercises.inference import exercise_tool_policy, infer_primary_sport
from garmin_trainer.integrations.garmin.connections import ensure_garmin_access_token, fetch_garmin_connection_by_user_id
from garmin_trainer.integrations.garmin.training_api import push_workout
from garmin_trainer.services.credits import get_plan, get_user, refund_garmin_conversion_credit, reserve_garmin_conversion_credit
from garmin_trainer.utils.timezone import to_utc, utcnow
from garmin_trainer.workouts.converter import convert_structured_plan_to_garmin
from garmin_trainer.workouts.normalization import coerce_owner_id, normalize_workout
from garmin_trainer.workouts.schema import format_issues_for_prompt, validate_garmin_workout
from garmin_trainer.workouts.structured_plan import is_structured_plan_document, parse_structured_plan, split_plan_markdown

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_PROCESSING)

ESTIMATED_MINUTES = 2
TIMEOUT_ERROR = "Conversion timed out; your credit was refunded."


# Creation and lookup


def create_garmin_trainer_job(user_id: int, plan_markdown: str) -> GarminTrainerJob:
    """Reserve a credit and create a pending job.

    Raises:
        ValueError: Empty markdown
        GarminNotConnectedError: No Garmin connection for the user
        InsufficientCreditsError: No conversion credit left
    """
    if not plan_markdown or not plan_markdown.strip():
        raise ValueError("planMarkdown must be a non-empty string")

    if fetch_garmin_connection_by_user_id(user_id) is None:
        raise GarminNotConnectedError("Connect your Garmin account before converting a plan")

    remaining = reserve_garmin_conversion_credit(user_id)
    if remaining is None:
        user = get_user(user_id)
        plan = get_plan(user.plan_type if user else None)
        raise InsufficientCreditsError(plan_label=plan.label, quota=plan.garmin_conversions)

    now = utcnow()
    try:
        with get_session() as session:
            job = GarminTrainerJob(
                user_id=user_id,
                status=STATUS_PENDING,
                phase="queued",
                plan_markdown=plan_markdown.strip(),
                credit_reserved=True,
                credit_refunded=False,
                created_at=now,
                updated_at=now,
            )
            session.add(job)
            session.flush()
    except Exception:
        refund_garmin_conversion_credit(user_id)
        raise

    logger.info(f"[GARMIN_TRAINER] Job {job.id} created for user_id={user_id}")
    return job


def _load_job(job_id: int) -> GarminTrainerJob | None:
    with get_session() as session:
        return session.get(GarminTrainerJob, job_id)


def get_job_for_user(job_id: int, user_id: int) -> GarminTrainerJob | None:
    """Job owned by the user, None otherwise; stale active jobs are timed out first."""
    with get_session() as session:
        job = session.execute(
            select(GarminTrainerJob).where(GarminTrainerJob.id == job_id, GarminTrainerJob.user_id == user_id)
        ).scalar_one_or_none()
    if job is None:
        return None
    if _expire_if_stale(job):
        return _load_job(job_id)
    return job


def serialize_job(job: GarminTrainerJob) -> dict[str, Any]:
    def iso(value):
        return to_utc(value).isoformat() if value else None

    return {
        "id": job.id,
        "userId": job.user_id,
        "status": job.status,
        "phase": job.phase,
        "planMarkdown": job.plan_markdown,
        "resultJson": job.result_json,
        "pushResultJson": job.push_result_json,
        "garminWorkoutId": job.garmin_workout_id,
        "error": job.error,
        "aiRawResponse": job.ai_raw_response,
        "aiDebugPayload": job.ai_debug_payload,
        "aiModelId": job.ai_model_id,
        "creditReserved": job.credit_reserved,
        "creditRefunded": job.credit_refunded,
        "createdAt": iso(job.created_at),
        "updatedAt": iso(job.updated_at),
        "processedAt": iso(job.processed_at),
    }


# State transitions


def claim_job(job_id: int) -> bool:
    """pending -> processing; False when another worker got there first."""
    with get_session() as session:
        result = session.execute(
            update(GarminTrainerJob)
            .where(GarminTrainerJob.id == job_id, GarminTrainerJob.status == STATUS_PENDING)
            .values(status=STATUS_PROCESSING, phase="processing", updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


def _update_job(job_id: int, **values: Any) -> None:
    values.setdefault("updated_at", utcnow())
    with get_session() as session:
        session.execute(
            update(GarminTrainerJob)
            .where(GarminTrainerJob.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )


def _release_job_credit(job_id: int) -> bool:
    """Refund the job's credit unless it was already refunded."""
    with get_session() as session:
        locked = session.execute(
            update(GarminTrainerJob)
            .where(
                GarminTrainerJob.id == job_id,
                GarminTrainerJob.credit_reserved.is_(True),
                GarminTrainerJob.credit_refunded.is_(False),
            )
            .values(credit_refunded=True)
            .execution_options(synchronize_session=False)
        ).rowcount
        user_id = session.execute(select(GarminTrainerJob.user_id).where(GarminTrainerJob.id == job_id)).scalar_one_or_none()

    if locked != 1 or user_id is None:
        return False
    refund_garmin_conversion_credit(user_id)
    return True


def mark_job_failed(
    job_id: int,
    error: str,
    *,
    raw_response: str | None = None,
    debug_payload: Any = None,
    only_if_active: bool = False,
) -> bool:
    """Record the failure and refund the credit (once).

    With only_if_active the transition happens only from pending/processing,
    which makes concurrent timeouts safe.
    """
    now = utcnow()
    stmt = update(GarminTrainerJob).where(GarminTrainerJob.id == job_id)
    if only_if_active:
        stmt = stmt.where(GarminTrainerJob.status.in_(ACTIVE_STATUSES))
    values: dict[str, Any] = {
        "status": STATUS_FAILED,
        "phase": "failed",
        "error": error[:2000],
        "updated_at": now,
        "processed_at": now,
    }
    if raw_response is not None:
        values["ai_raw_response"] = raw_response
    if debug_payload is not None:
        values["ai_debug_payload"] = debug_payload

    with get_session() as session:
        changed = session.execute(stmt.values(**values).execution_options(synchronize_session=False)).rowcount
    if not changed:
        return False

    logger.warning(f"[GARMIN_TRAINER] Job {job_id} failed: {error}")
    _release_job_credit(job_id)
    return True


def _is_stale(job: GarminTrainerJob) -> bool:
    if job.status not in ACTIVE_STATUSES:
        return False
    reference = job.updated_at or job.created_at
    timeout = timedelta(seconds=settings.garmin_trainer_job_timeout_seconds)
    return to_utc(reference) < utcnow() - timeout


def _expire_if_stale(job: GarminTrainerJob) -> bool:
    if not _is_stale(job):
        return False
    return mark_job_failed(job.id, TIMEOUT_ERROR, only_if_active=True)


def expire_stale_jobs() -> int:
    threshold = utcnow() - timedelta(seconds=settings.garmin_trainer_job_timeout_seconds)
    with get_session() as session:
        stale_ids = (
            session.execute(
                select(GarminTrainerJob.id).where(
                    GarminTrainerJob.status.in_(ACTIVE_STATUSES),
                    or_(
                        GarminTrainerJob.updated_at < threshold,
                        (GarminTrainerJob.updated_at.is_(None)) & (GarminTrainerJob.created_at < threshold),
                    ),
                )
            )
            .scalars()
            .all()
        )
    return sum(1 for job_id in stale_ids if mark_job_failed(job_id, TIMEOUT_ERROR, only_if_active=True))


# Conversion


def _debug_payload(workout: Any, issues: list[Any]) -> dict[str, Any]:
    return {"workout": workout, "issues": [issue.to_dict() for issue in issues]}


def _convert_structured_plan(plan, human_markdown: str, garmin_user_id: str) -> dict[str, Any]:
    workout = convert_structured_plan_to_garmin(
        plan,
        owner_id=coerce_owner_id(garmin_user_id),
        human_description=human_markdown,
        sport_fallback=infer_primary_sport(human_markdown),
    )
    return normalize_workout(workout, owner_id=garmin_user_id)


def _workout_from_ai_result(result: GenerationResult, *, human_markdown: str, garmin_user_id: str, use_tool: bool) -> dict[str, Any]:
    if result.parse_error:
        raise GarminConversionError(f"AI returned invalid JSON: {result.parse_error}", raw_response=result.raw_text)

    data = result.data
    if not isinstance(data, dict):
        raise GarminConversionError("AI JSON is not an object", raw_response=result.raw_text)

    if is_structured_plan_document(data):
        plan = parse_structured_plan(data)
        if plan is None:
            raise GarminConversionError("AI structured plan does not match the expected shape", raw_response=result.raw_text, debug_payload=data)
        return _convert_structured_plan(plan, human_markdown, garmin_user_id)

    if use_tool and not isinstance(data.get("segments"), list):
        message = data.get("error") if isinstance(data.get("error"), str) else "No valid exercise found in the Garmin catalog."
        raise GarminConversionError(message, raw_response=result.raw_text, debug_payload=data)

    return normalize_workout(data, owner_id=garmin_user_id)


async def convert_plan_markdown_for_user(user_id: int, plan_markdown: str, *, job_id: int | None = None) -> tuple[dict[str, Any], str | None, str]:
    """Turn a markdown plan into a validated Garmin workout.

    An embedded structured plan is converted deterministically; otherwise the
    AI strategy chosen by the exercise policy generates the workout, with up
    to GARMIN_TRAINER_CORRECTION_ATTEMPTS correction rounds.

    Returns:
        (workout payload, model id or None for deterministic conversion, raw text)

    Raises:
        GarminNotConnectedError, GarminConversionError, AiConfigurationError, AiRequestError
    """
    connection = fetch_garmin_connection_by_user_id(user_id)
    if connection is None:
        raise GarminNotConnectedError("No Garmin connection found for this user")
    garmin_user_id = connection.garmin_user_id

    human_markdown, structured_json = split_plan_markdown(plan_markdown)
    structured_plan = parse_structured_plan(structured_json)
    if structured_plan is not None:
        logger.info(f"[GARMIN_TRAINER] Structured plan found, converting without AI (user_id={user_id})")
        workout = _convert_structured_plan(structured_plan, human_markdown, garmin_user_id)
        validation = validate_garmin_workout(workout)
        if not validation.success:
            raise GarminConversionError(
                "Structured plan does not produce a valid Garmin workout",
                raw_response=structured_json,
                debug_payload=_debug_payload(workout, validation.issues),
                issues=validation.issues,
            )
        return validation.workout.to_payload(), None, structured_json or ""

    use_tool, sports = exercise_tool_policy(plan_markdown)
    base_prompt = "\n\n".join(
        [owner_instruction(garmin_user_id), build_final_prompt(load_prompt_template(), human_markdown, structured_json)]
    )
    if not use_tool:
        base_prompt = "\n\n".join([base_prompt, build_exercise_catalog_snippet(sports)])

    client = get_garmin_ai_client(use_exercise_tool=use_tool)
    request = GenerationRequest(
        base_prompt=base_prompt,
        model_ids=get_ai_model_candidates(GARMIN_TRAINER_FEATURE),
        system_prompt=DEFAULT_SYSTEM_PROMPT,
        referer=settings.app_origin,
    )
    logger.info(f"[GARMIN_TRAINER] AI conversion for user_id={user_id} strategy={client.name} sports={sports}")

    attempts = settings.garmin_trainer_correction_attempts + 1
    for attempt in range(attempts):
        if job_id is not None:
            _update_job(job_id, phase="generating" if attempt == 0 else f"correcting ({attempt})")
        result = await client.generate(request)
        workout = _workout_from_ai_result(result, human_markdown=human_markdown, garmin_user_id=garmin_user_id, use_tool=use_tool)

        if job_id is not None:
            _update_job(job_id, phase="validating", ai_model_id=result.model_id)
        validation = validate_garmin_workout(workout, check_exercise_catalog=use_tool)
        if validation.success:
            return validation.workout.to_payload(), result.model_id, result.raw_text

        logger.warning(f"[GARMIN_TRAINER] Validation failed with {len(validation.issues)} issue(s) (attempt {attempt + 1}/{attempts})")
        if attempt + 1 >= attempts:
            raise GarminConversionError(
                "The generated workout does not match the Garmin schema",
                raw_response=result.raw_text,
                debug_payload=_debug_payload(workout, validation.issues),
                issues=validation.issues,
            )
        request = GenerationRequest(
            base_prompt=correction_prompt(base_prompt, json.dumps(workout, ensure_ascii=False), format_issues_for_prompt(validation.issues)),
            model_ids=[result.model_id, *[model_id for model_id in request.model_ids if model_id != result.model_id]],
            system_prompt=request.system_prompt,
            referer=request.referer,
        )

    raise GarminConversionError("No conversion attempt was made")


async def push_workout_for_user(user_id: int, workout: dict[str, Any]) -> dict[str, Any]:
    """Send a validated workout to Garmin and schedule it for today.

    Raises:
        GarminNotConnectedError, GarminTokenRefreshError, GarminApiError
    """
    connection = fetch_garmin_connection_by_user_id(user_id)
    if connection is None:
        raise GarminNotConnectedError("No Garmin connection found for this user")

    access_token, connection = await ensure_garmin_access_token(connection)
    payload = normalize_workout(workout, owner_id=connection.garmin_user_id)
    logger.info(f"[GARMIN_TRAINER] Pushing workout for user_id={user_id}")
    return await push_workout(access_token, payload)


# Processing


async def process_garmin_trainer_job(job_id: int) -> bool:
    """Run one job to completion or failure.

    Returns:
        False when the job could not be claimed (missing or already taken)
    """
    if not claim_job(job_id):
        logger.debug(f"[GARMIN_TRAINER] Job {job_id} not claimable")
        return False

    job = _load_job(job_id)
    logger.info(f"[GARMIN_TRAINER] Processing job {job_id} for user_id={job.user_id}")
    try:
        workout, model_id, raw_text = await convert_plan_markdown_for_user(job.user_id, job.plan_markdown, job_id=job_id)
        _update_job(job_id, result_json=workout, ai_model_id=model_id, ai_raw_response=raw_text, phase="converted")

        if settings.garmin_trainer_auto_push:
            _update_job(job_id, phase="pushing")
            try:
                push_result = await push_workout_for_user(job.user_id, workout)
            except GarminApiError as e:
                mark_job_failed(job_id, f"Garmin push failed: {e}", debug_payload={"status": e.status_code, "body": e.body})
                return True
            _update_job(job_id, push_result_json=push_result, garmin_workout_id=push_result.get("workoutId"))

        now = utcnow()
        with get_session() as session:
            completed = session.execute(
                update(GarminTrainerJob)
                .where(GarminTrainerJob.id == job_id, GarminTrainerJob.status == STATUS_PROCESSING)
                .values(status=STATUS_COMPLETED, phase="completed", error=None, processed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount
        if completed:
            logger.info(f"[GARMIN_TRAINER] Job {job_id} completed")
        else:
            # Timed out while running; the failure and refund already happened
            logger.warning(f"[GARMIN_TRAINER] Job {job_id} finished after being timed out")
    except GarminConversionError as e:
        mark_job_failed(job_id, str(e), raw_response=e.raw_response, debug_payload=e.debug_payload)
    except Exception as e:
        logger.exception(f"[GARMIN_TRAINER] Job {job_id} crashed: {type(e).__name__}: {e}")
        mark_job_failed(job_id, f"{type(e).__name__}: {e}")
    return True


async def process_pending_jobs(limit: int | None = None) -> int:
    """Time out stale jobs, then process pending ones in creation order."""
    expired = expire_stale_jobs()
    if expired:
        logger.info(f"[GARMIN_TRAINER] {expired} stale job(s) timed out")

    limit = limit or settings.garmin_trainer_batch_size
    with get_session() as session:
        job_ids = (
            session.execute(
                select(GarminTrainerJob.id)
                .where(GarminTrainerJob.status == STATUS_PENDING)
                .order_by(GarminTrainerJob.created_at, GarminTrainerJob.id)
                .limit(limit)
            )
            .scalars()
            .all()
        )

    processed = 0
    for job_id in job_ids:
        if await process_garmin_trainer_job(job_id):
            processed += 1
    return processed
