"""
Public submission intake endpoint used by the embed script
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from services.errors import IntakeError
from services.submissions_service import SubmissionIntake
from utils.limiter import INTAKE_HTTP_LIMIT, limiter, origin_address

router = APIRouter(tags=["submissions"])


def get_intake(request: Request) -> SubmissionIntake:
    return request.app.state.intake


def _raise_http(exc: IntakeError):
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.post("/submit-form")
@router.post("/submit-form/")
@limiter.limit(INTAKE_HTTP_LIMIT)
async def submit_form_missing_id(request: Request):
    raise HTTPException(status_code=400, detail="Form ID is required")


@router.post("/submit-form/{form_id}")
@limiter.limit(INTAKE_HTTP_LIMIT)
async def submit_form(form_id: str, request: Request, intake: SubmissionIntake = Depends(get_intake)):
    """Accept a submission; the response never reveals the spam verdict"""
    try:
        payload = await request.json()
    except ValueError:
        # JSONDecodeError, UnicodeDecodeError and over-long integer literals
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")

    try:
        result = await intake.handle_submission(
            form_id,
            payload,
            origin_address(request),
            request.headers.get("user-agent") or "",
        )
    except IntakeError as e:
        _raise_http(e)
    return result.to_response()
