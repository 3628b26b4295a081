from fastapi import HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.auth_handler import decode_jwt


class JWTBearer(HTTPBearer):
    """
    Operator authentication for back-office routes.

    Resolves to the `operator_id` claim of a valid bearer token, which is what
    the allocation log records as `performed_by`.
    """

    def __init__(self, auto_error: bool = True):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request: Request) -> str:
        credentials: HTTPAuthorizationCredentials = await super().__call__(request)
        if not credentials:
            raise HTTPException(status_code=403, detail="Invalid authorization code.")
        if credentials.scheme != "Bearer":
            raise HTTPException(status_code=403, detail="Invalid authentication scheme.")

        payload = decode_jwt(credentials.credentials)
        if not payload or not payload.get("operator_id"):
            raise HTTPException(status_code=403, detail="Invalid token or expired token.")

        request.state.operator_id = payload["operator_id"]
        return payload["operator_id"]
