from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.session_token import SessionToken
from ..utils.time import utcnow


class SessionTokenRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, user_id: int, token_hash: str, expires_at: datetime) -> SessionToken:
        session_token = SessionToken(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
        )
        self._session.add(session_token)
        await self._session.flush()
        return session_token

    async def get_by_hash(self, token_hash: str) -> SessionToken | None:
        result = await self._session.execute(
            select(SessionToken).where(SessionToken.token_hash == token_hash)
        )
        return result.scalars().first()

    async def revoke(self, session_token: SessionToken) -> SessionToken:
        if session_token.revoked_at is None:
            session_token.revoked_at = utcnow()
            await self._session.flush()
        return session_token

    async def revoke_all_for_user(self, user_id: int) -> int:
        result = await self._session.execute(
            update(SessionToken)
            .where(SessionToken.user_id == user_id, SessionToken.revoked_at.is_(None))
            .values(revoked_at=utcnow())
        )
        return result.rowcount or 0
