"""
Public form definition endpoint used by the embed script
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from db.repository import IntakeRepository
from utils.limiter import INTAKE_HTTP_LIMIT, limiter

router = APIRouter(tags=["forms"])


def get_repository(request: Request) -> IntakeRepository:
    return request.app.state.repository


@router.get("/get-form")
@router.get("/get-form/")
async def get_form_missing_id():
    raise HTTPException(status_code=400, detail="Form ID is required")


@router.get("/get-form/{form_id}")
@limiter.limit(INTAKE_HTTP_LIMIT)
async def get_form(form_id: str, request: Request, repository: IntakeRepository = Depends(get_repository)):
    """Active form definition; inactive and unknown forms are both 404"""
    form = await repository.get_form(form_id)
    if form is None or not form.is_active:
        raise HTTPException(status_code=404, detail="Form not found")
    return form.public_view()
