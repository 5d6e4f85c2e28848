"""
Contact Variable API Router
Variable catalog and CSV header mapping for contact uploads
"""

from dataclasses import asdict

from fastapi import APIRouter
import structlog

from app.models.api_schemas import (
    ContactVariableCatalogResponse,
    MatchHeadersRequest,
    MatchHeadersResponse,
)
from app.services.contact_variables import (
    find_variable_match,
    get_required_variables,
    get_variable_by_key,
    get_variables_by_category,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/contact-variables", tags=["contact-variables"])


@router.get("", response_model=ContactVariableCatalogResponse)
async def list_contact_variables():
    """
    Standard variables prompts may reference as {{key}}, grouped by category.
    """
    return {
        "categories": {
            category: [asdict(v) for v in variables]
            for category, variables in get_variables_by_category().items()
        },
        "required": [v.key for v in get_required_variables()],
    }


@router.post("/match", response_model=MatchHeadersResponse)
async def match_csv_headers(request: MatchHeadersRequest):
    """
    Suggest a variable key for each CSV header and report required
    variables no header maps to.
    """
    mappings = {}
    for header in request.headers:
        key = find_variable_match(header)
        mappings[header] = asdict(get_variable_by_key(key)) if key else None

    matched = set(v["key"] for v in mappings.values() if v)
    missing_required = [v.key for v in get_required_variables() if v.key not in matched]

    logger.info(
        "csv_headers_matched",
        header_count=len(request.headers),
        matched_count=len(matched),
        missing_required=missing_required
    )
    return {"mappings": mappings, "missing_required": missing_required}
