import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from voapi_relay.api.exceptions import PersistenceError
from voapi_relay.config.logging import get_logger, mask_secret
from voapi_relay.models.artifacts import RedemptionCode, SessionCookie, Token


def redemption_code_text(payload: Any) -> str:
    """The upstream ``code`` field, or the whole response serialized when it is missing."""
    if isinstance(payload, dict) and payload.get("code"):
        return str(payload["code"])
    return payload if isinstance(payload, str) else json.dumps(payload)


def describe_database_error(error: SQLAlchemyError) -> str:
    """Driver message without the SQL statement or its bound parameters."""
    orig = getattr(error, "orig", None)
    if orig is not None:
        return f"{type(orig).__name__}: {orig}"
    return type(error).__name__


class PersistenceGateway:
    """Append-only writes for sessions, redemption codes and tokens.

    Each save runs in its own session and transaction; nothing here updates or
    deletes a row.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self.logger = get_logger("database.gateway")

    async def _insert(self, operation: str, row):
        try:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
        except SQLAlchemyError as e:
            detail = describe_database_error(e)
            self.logger.error("Insert failed", operation=operation, error=detail, error_type=type(e).__name__)
            raise PersistenceError(operation, detail) from e
        return row

    async def save_session(
        self,
        username: str,
        session_cookies: str,
        captured_at: Optional[datetime] = None,
    ) -> SessionCookie:
        row = SessionCookie(username=username, session_cookies=session_cookies)
        if captured_at is not None:
            row.created_at = captured_at
        row = await self._insert("save session cookies", row)
        self.logger.info("Session cookies saved", username=username, cookies=mask_secret(session_cookies), row_id=row.id)
        return row

    async def save_redemption_code(
        self,
        code_data: Any,
        name: str,
        quota: int,
        count: int,
        user_ip: Optional[str],
    ) -> RedemptionCode:
        row = await self._insert(
            "save redemption code",
            RedemptionCode(
                code=redemption_code_text(code_data),
                name=name,
                quota=quota,
                count=count,
                user_ip=user_ip,
            ),
        )
        self.logger.info("Redemption code saved", name=name, row_id=row.id)
        return row

    async def save_token(
        self,
        name: str,
        raw_response: Any,
        token_key: str,
        remain_quota: int,
        expired_time: int,
        unlimited_quota: bool,
        model_limits_enabled: bool,
        user_ip: Optional[str],
        model_limits: str = "",
        allow_ips: str = "",
        group: str = "",
    ) -> Token:
        row = await self._insert(
            "save token",
            Token(
                name=name,
                raw_response=raw_response if isinstance(raw_response, str) else json.dumps(raw_response),
                token_key=token_key,
                remain_quota=remain_quota,
                expired_time=expired_time,
                unlimited_quota=unlimited_quota,
                model_limits_enabled=model_limits_enabled,
                model_limits=model_limits or "",
                allow_ips=allow_ips or "",
                token_group=group or "",
                user_ip=user_ip,
            ),
        )
        self.logger.info("Token saved", name=name, token_key=mask_secret(token_key), row_id=row.id)
        return row
