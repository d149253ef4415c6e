"""
Connection check endpoint.

POST /connections/test
Body: {connectionId}
Response: {success, error}; the connection's active flag is updated to match.
"""
from fastapi import APIRouter, Depends

from ticketchat.models.requests import ConnectionTestRequest
from ticketchat.models.responses import ConnectionTestResponse
from ticketchat.routes.deps import get_connection_checker, require_user_id
from ticketchat.services.connection_check import ConnectionChecker

router = APIRouter()


@router.post("/test", response_model=ConnectionTestResponse)
async def check_connection(
    body: ConnectionTestRequest,
    user_id: str = Depends(require_user_id),
    checker: ConnectionChecker = Depends(get_connection_checker),
):
    result = await checker.check(body.connection_id, user_id)
    return ConnectionTestResponse(success=result.success, error=result.error)
