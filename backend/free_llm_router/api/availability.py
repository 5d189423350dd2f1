from fastapi import APIRouter, Depends, Request
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from free_llm_router.core.database import get_db
from free_llm_router.core.response import error, ok, request_id_from_request
from free_llm_router.core.time_utils import isoformat_z, utcnow
from free_llm_router.schemas.params import validate_use_cases
from free_llm_router.services.availability_service import (
    AVAILABILITY_SORTS,
    clamp_days,
    get_model_availability,
)

router = APIRouter()


@router.get("/availability")
def model_availability_api(request: Request, db: Session = Depends(get_db)):
    request_id = request_id_from_request(request)
    query = request.query_params
    days = clamp_days(query.get("days"))
    sort = query.get("sort") if query.get("sort") in AVAILABILITY_SORTS else None
    try:
        models, dates = get_model_availability(
            db,
            days=days,
            use_cases=validate_use_cases(query.get("useCases")),
            sort=sort,
        )
    except SQLAlchemyError:
        logger.exception("Failed to load availability (request {})", request_id)
        return error("INTERNAL_ERROR", "Failed to fetch availability data", request_id, status_code=500)

    return ok(
        {
            "models": models,
            "dates": dates,
            "lastUpdated": isoformat_z(utcnow()),
            "count": len(models),
        },
        request_id,
        headers={"Cache-Control": "public, max-age=300"},
    )
