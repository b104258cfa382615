from typing import Any, AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.services import Services


def get_services(request: Request) -> Services:
	return request.app.state.services


async def get_session(request: Request) -> AsyncGenerator[AsyncSession | Any, Any]:
	"""Request-scoped session from the same factory the background services use"""
	session_factory = get_services(request).session_factory
	async with session_factory() as session:
		try:
			yield session
			await session.commit()
		except Exception:
			await session.rollback()
			raise
