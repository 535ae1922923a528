import asyncio
import logging
from typing import Dict

import aiohttp
from fastapi import HTTPException, status

from . import config, schemas

logger = logging.getLogger(__name__)


class IdentityClient:
    """Resolves bearer tokens and user display names through the auth service."""

    def __init__(self, base_url: str = None, timeout: float = None):
        self.base_url = (base_url or config.AUTH_SERVICE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or config.HTTP_TIMEOUT_SECONDS)

    async def verify_token(self, token: str) -> schemas.CurrentUser:
        logger.debug(f"Verifying token: {token[:20]}...")
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(
                        f"{self.base_url}/users/me",
                        headers={"Authorization": f"Bearer {token}"},
                ) as response:
                    if response.status == 200:
                        user = schemas.CurrentUser.model_validate(await response.json())
                        logger.info(f"User authenticated: {user.id}")
                        return user
                    error_text = await response.text()
                    logger.warning(f"Auth service rejected token: {response.status} - {error_text}")
                    raise HTTPException(
                        status_code=status.HTTP_401_UNAUTHORIZED,
                        detail="Invalid authentication credentials"
                    )
        except aiohttp.ClientError as e:
            logger.error(f"Cannot connect to auth service: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Authentication service unavailable"
            )
        except asyncio.TimeoutError:
            logger.error("Auth service timeout")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Authentication service timeout"
            )

    async def user_names(self, token: str) -> Dict[int, str]:
        """Map user id -> full name; empty when the auth service cannot answer."""
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(
                        f"{self.base_url}/users/",
                        params={"limit": 1000},
                        headers={"Authorization": f"Bearer {token}"},
                ) as response:
                    if response.status != 200:
                        logger.error(f"Cannot list users: HTTP {response.status}")
                        return {}
                    return {user["id"]: user.get("full_name") for user in await response.json()}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"User names unavailable, listing without them: {e}")
            return {}
