"""apps/gateway 测试配置 -- 经 lifespan 初始化的 app + httpx AsyncClient"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient


@pytest_asyncio.fixture
async def gateway_env(tmp_path: Path, monkeypatch) -> Path:
    """Gateway 临时数据目录 + 测试环境变量"""
    monkeypatch.setenv("TASKRELAY_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("TASKRELAY_TASKS_DIR", str(tmp_path / "tasks"))
    monkeypatch.setenv("TASKRELAY_DB_PATH", str(tmp_path / "sqlite" / "test.db"))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    return tmp_path


@pytest_asyncio.fixture
async def app(gateway_env: Path) -> AsyncGenerator[FastAPI, None]:
    """创建测试用 FastAPI app，并执行 lifespan（ASGITransport 不触发 lifespan）"""
    from taskrelay.gateway.main import create_app

    application = create_app()
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
