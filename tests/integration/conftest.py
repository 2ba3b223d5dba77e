"""集成测试共享 fixture -- 两种存储后端上的完整网关"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient


@pytest.fixture(params=["file", "sqlite"])
def integration_env(request: pytest.FixtureRequest, tmp_path: Path, monkeypatch) -> Path:
    """集成测试环境变量"""
    monkeypatch.setenv("TASKRELAY_STORE", request.param)
    monkeypatch.setenv("TASKRELAY_TASKS_DIR", str(tmp_path / "tasks"))
    monkeypatch.setenv("TASKRELAY_DB_PATH", str(tmp_path / "sqlite" / "test.db"))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    return tmp_path


@pytest_asyncio.fixture
async def integration_app(integration_env: Path) -> AsyncGenerator[FastAPI, None]:
    """集成测试用 FastAPI app（已执行 lifespan）"""
    from taskrelay.gateway.main import create_app

    app = create_app()
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def integration_client(
    integration_app: FastAPI,
) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
