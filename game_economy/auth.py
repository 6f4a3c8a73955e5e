# game_economy/auth.py
"""
Bearer-token -> userId. Tokens are issued by the auth service; this side
only verifies the signature and reads the `userId` claim.
"""

import jwt
from fastapi import Request

from game_economy.errors import AuthenticationError
from game_economy.settings import settings


def resolve_user_id(token: str) -> str:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        raise AuthenticationError("Invalid token") from e

    user_id = payload.get("userId")
    if not isinstance(user_id, str) or not user_id:
        raise AuthenticationError("Invalid token")
    return user_id


async def current_user_id(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        raise AuthenticationError("Authorization token required")
    return resolve_user_id(header[len("Bearer "):])
