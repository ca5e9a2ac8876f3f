"""Resolve inbound Basic credentials to an upstream identity."""

import hmac
import logging

from api.schemas import InternalUser
from core.config import Settings, VirtualUserRecord
from services.errors import BadGateway, Unauthorized
from services.upstream_client import UpstreamClient

logger = logging.getLogger(__name__)


class AuthBridge:
    """Maps virtual users, the no-auth identity, or upstream logins to an InternalUser."""

    def __init__(self, settings: Settings, upstream: UpstreamClient):
        self.settings = settings
        self.upstream = upstream

    def _find_virtual_user(self, username: str) -> VirtualUserRecord | None:
        wanted = username.lower()
        for record in self.settings.virtual_users:
            if record.username.lower() == wanted:
                return record
        return None

    async def resolve(self, username: str | None, password: str | None) -> InternalUser:
        """
        Produce exactly one InternalUser for the request or fail.

        Raises:
            Unauthorized: Credentials missing, unknown, or rejected.
        """
        if self.settings.opds_no_auth:
            return await self._resolve_no_auth()

        if username is None or password is None:
            raise Unauthorized("credentials missing")

        virtual_users = self.settings.virtual_users
        if virtual_users:
            record = self._find_virtual_user(username)
            if record is None or not hmac.compare_digest(
                record.password.encode("utf-8"), password.encode("utf-8")
            ):
                logger.debug("Virtual user authentication failed for %s", username)
                raise Unauthorized("invalid virtual user credentials")
            logger.debug("Virtual user authenticated: %s", record.username)
            return InternalUser(username=record.username, api_key=record.upstream_api_key)

        if not self.settings.allow_upstream_login:
            raise Unauthorized("no virtual users configured and upstream login disabled")

        try:
            user = await self.upstream.login(username, password)
        except BadGateway as e:
            logger.debug("Upstream authentication failed for %s: %s", username, e)
            raise Unauthorized("upstream login failed") from e
        logger.debug("Upstream user authenticated: %s", username)
        return user

    async def _resolve_no_auth(self) -> InternalUser:
        username = self.settings.abs_noauth_username
        if self.settings.abs_noauth_api_key:
            return InternalUser(username=username, api_key=self.settings.abs_noauth_api_key)
        try:
            return await self.upstream.login(username, self.settings.abs_noauth_password)
        except BadGateway as e:
            logger.error("Auto-login failed for no-auth user %s: %s", username, e)
            raise Unauthorized("no-auth login failed") from e
