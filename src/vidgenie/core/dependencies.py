"""FastAPI dependency injection functions."""

from typing import AsyncGenerator

from fastapi import Request

from vidgenie.uow import UnitOfWork


async def get_uow(request: Request) -> AsyncGenerator[UnitOfWork, None]:
    """FastAPI dependency for Unit of Work injection.

    Retrieves the UoW factory from app.state and yields a UoW instance.
    The UoW is automatically committed on successful request completion
    or rolled back if an exception occurs.

    Example:
        @router.get("/api/credits/balance")
        async def get_balance(uow: UnitOfWork = Depends(get_uow)):
            account = await uow.credit_accounts.get(user_id)
    """
    uow_factory = request.app.state.uow_factory
    async with await uow_factory() as uow:
        yield uow
