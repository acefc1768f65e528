"""
Inbound webhook endpoint.

POST /webhooks/{provider}/{token} - the body is read raw so signatures are
checked against exactly the bytes the provider signed.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.database import get_db
from hookgate.schemas.api_responses import ErrorResponse, WebhookAcceptedResponse
from hookgate.services.intake import IntakePipeline, IntakeRejected

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_ERROR_RESPONSES = {
    code: {"model": ErrorResponse}
    for code in (400, 401, 403, 404, 413, 429, 500)
}


def get_intake(request: Request) -> IntakePipeline:
    return request.app.state.intake


@router.post(
    "/{provider}/{token}",
    status_code=201,
    response_model=WebhookAcceptedResponse,
    responses={200: {"model": WebhookAcceptedResponse}, **_ERROR_RESPONSES},
)
async def receive_webhook(
    provider: str,
    token: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    intake: IntakePipeline = Depends(get_intake),
):
    body = await request.body()
    try:
        result = await intake.receive(db, provider, token, body, request.headers)
    except IntakeRejected as rejected:
        return JSONResponse(
            status_code=rejected.status_code,
            content={"error": rejected.message},
            headers=rejected.headers or None,
        )
    except Exception as e:
        logger.error(
            "Webhook intake error for provider %s: %s", provider, type(e).__name__, exc_info=True,
        )
        return JSONResponse(status_code=500, content={"error": "Internal processing error"})
    return JSONResponse(status_code=result.status_code, content=result.body())
