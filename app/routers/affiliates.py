import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from app.affiliates import AffiliateError, AffiliateSignup
from app.clients import get_affiliate_signup
from app.logging_config import logger
from app.models import AffiliateSignupRequest
from app.security import verify_admin_api_key

router = APIRouter(prefix="/api/affiliates", tags=["Affiliates"])


# POST /api/affiliates
# Gets: JSON {name, email, slug}
# Returns: {affiliate, links: {direct, withCode}}
# Example:
#   curl -X POST http://localhost:8000/api/affiliates -H 'Content-Type: application/json' \
#     -d '{"name":"Jane","email":"jane@example.com","slug":"jane-elf"}'
@router.post("")
async def create_affiliate(request: Request, signup: AffiliateSignup = Depends(get_affiliate_signup)):
    """Public affiliate signup."""
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON data"})

    try:
        form = AffiliateSignupRequest.model_validate(body)
    except ValidationError as e:
        return JSONResponse(
            status_code=400,
            content={"error": "Validation failed", "details": json.loads(e.json(include_url=False))},
        )

    try:
        response = await run_in_threadpool(signup.signup, form)
    except AffiliateError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_dict())

    logger.info("affiliate_signup", affiliate_id=response.affiliate.id, slug=response.affiliate.slug)
    return response.model_dump(mode="json", by_alias=True)


# GET /api/affiliates?active=false
# Gets: X-API-Key header; `active=false` includes deactivated partners
# Returns: {affiliates: [...]} newest first
# Example:
#   curl -H 'X-API-Key: <key>' http://localhost:8000/api/affiliates
@router.get("")
def list_affiliates(
    active: str = "true",
    signup: AffiliateSignup = Depends(get_affiliate_signup),
    api_key: str = Depends(verify_admin_api_key),
):
    affiliates = signup.list_affiliates(active_only=active.lower() != "false")
    return {"affiliates": [a.model_dump(mode="json") for a in affiliates]}
