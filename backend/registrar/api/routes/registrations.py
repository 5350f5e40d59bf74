"""
Registration endpoints backed by the retry orchestrator.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from registrar.api.deps import get_registration_api
from registrar.core.logging import get_logger
from registrar.schemas.registration import RegistrationIntent
from registrar.schemas.retry import RetryStatus, RetryStatusResponse, Submission
from registrar.services.registration_api import RegistrationApi

logger = get_logger(__name__)
router = APIRouter(prefix="/registrations", tags=["Registrations"])


@router.post("/", response_model=Submission, status_code=status.HTTP_201_CREATED)
async def submit_registration_endpoint(
    intent: RegistrationIntent,
    response: Response,
    api: RegistrationApi = Depends(get_registration_api),
):
    """
    Submit a registration.

    The first attempt runs before the response is sent:
    - 201: the order was created
    - 202: the attempt failed with a retryable error; poll the retry id
    - 200: the registration failed for good; the reason is in `result`
    """
    submission = await api.submit_registration(intent.user_id, intent)
    if submission.status is RetryStatus.PENDING:
        response.status_code = status.HTTP_202_ACCEPTED
    elif submission.status is not RetryStatus.SUCCESS:
        response.status_code = status.HTTP_200_OK
    return submission


@router.get("/retries/{retry_id}", response_model=RetryStatusResponse)
async def get_retry_status_endpoint(
    retry_id: str,
    api: RegistrationApi = Depends(get_registration_api),
):
    return await api.get_retry_status(retry_id)


@router.delete("/retries/{retry_id}", response_model=RetryStatusResponse)
async def abandon_retry_endpoint(
    retry_id: str,
    api: RegistrationApi = Depends(get_registration_api),
):
    """Stop retrying. A terminal record is returned unchanged."""
    return await api.abandon_retry(retry_id)


@router.get("/users/{user_id}", response_model=list[RetryStatusResponse])
async def list_user_attempts_endpoint(
    user_id: str,
    api: RegistrationApi = Depends(get_registration_api),
):
    """All registration attempts of a user, oldest first."""
    return await api.get_user_registration_attempts(user_id)


@router.post("/retries/cleanup")
async def cleanup_expired_retries_endpoint(
    max_age_hours: Optional[float] = Query(None, gt=0),
    api: RegistrationApi = Depends(get_registration_api),
):
    cleaned = await api.cleanup_expired_retries(max_age_hours)
    logger.info("cleanup_requested", cleaned_count=cleaned)
    return {"cleaned": cleaned}
