from fastapi import Request
from jose import JWTError, jwt
import logging
import httpx

from codepair.core import config
from codepair.errors import CodePairError, UnauthenticatedError

logger = logging.getLogger("codepair.auth")


async def _verify_with_identity_service(token: str) -> str | None:
    if not config.IDENTITY_VERIFY_URL:
        return None

    headers = {"Authorization": f"Bearer {token}"}
    if config.IDENTITY_API_KEY:
        headers["apikey"] = config.IDENTITY_API_KEY
    try:
        async with httpx.AsyncClient(timeout=6.0) as client:
            response = await client.get(config.IDENTITY_VERIFY_URL, headers=headers)
    except httpx.HTTPError as exc:
        logger.warning("identity verification request failed: %s", exc)
        return None

    if response.status_code != 200:
        return None

    try:
        data = response.json()
    except ValueError:
        return None

    user_id = (data or {}).get("id") or (data or {}).get("sub")
    return str(user_id) if user_id else None


async def resolve_caller_id_from_token_async(token: str | None) -> str:
    token = str(token or "").strip()
    if not token:
        raise UnauthenticatedError()

    payload = None
    if config.IDENTITY_JWT_SECRET:
        try:
            payload = jwt.decode(token, config.IDENTITY_JWT_SECRET, algorithms=["HS256"])
        except JWTError:
            raise UnauthenticatedError("Invalid token")
    else:
        user_id = await _verify_with_identity_service(token)
        if user_id:
            payload = {"sub": user_id}
        else:
            if config.ENVIRONMENT == "production":
                raise CodePairError("IDENTITY_JWT_SECRET is not configured", 500)
            if not config.ALLOW_UNVERIFIED_JWT_DEV:
                raise UnauthenticatedError(
                    "Token verification unavailable in development; configure IDENTITY_JWT_SECRET "
                    "or set ALLOW_UNVERIFIED_JWT_DEV=true"
                )
            try:
                payload = jwt.get_unverified_claims(token)
                logger.warning("ALLOW_UNVERIFIED_JWT_DEV enabled; using unverified token claims in non-production mode")
            except JWTError:
                raise UnauthenticatedError("Invalid token")

    user_id = (payload or {}).get("sub")
    if not user_id:
        raise UnauthenticatedError("Invalid token")
    return str(user_id)


def bearer_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization")
    if not auth or not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1)


async def get_caller_id(request: Request) -> str:
    token = bearer_token(request)
    if not token:
        raise UnauthenticatedError()
    return await resolve_caller_id_from_token_async(token)
