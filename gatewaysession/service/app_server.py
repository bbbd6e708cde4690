from __future__ import annotations

from typing import Any

from gatewaysession.service.executor import AuthenticatedRequestExecutor
from gatewaysession.storage.models import AuthenticatedRequest


class AppServerClient:
    """Protected application server endpoints (Authorization: Bearer required)."""

    def __init__(self, executor: AuthenticatedRequestExecutor) -> None:
        self.executor = executor

    async def me(self) -> Any:
        """Fetch the current user."""
        response = await self.executor.execute(AuthenticatedRequest(path="/me"))
        return response.data

    async def home(self) -> Any:
        """Fetch personalized home content."""
        response = await self.executor.execute(AuthenticatedRequest(path="/home"))
        return response.data
