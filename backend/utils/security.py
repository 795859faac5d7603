from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError

from config.constants import ROLE_ADMIN, ROLE_BUYER, ROLE_SELLER
from utils.jwt import decode_token

security = HTTPBearer()

KNOWN_ROLES = {ROLE_ADMIN, ROLE_SELLER, ROLE_BUYER}


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
):
    """
    Identity is resolved upstream; the token's ``sub`` and ``role`` claims
    are the acting user.
    """
    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    subject = payload.get("sub")
    role = payload.get("role")

    if not subject or role not in KNOWN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    return {"_id": str(subject), "role": role}


def require_role(*roles: str):
    async def checker(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return checker
