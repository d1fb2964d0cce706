"""测试配置和 fixtures."""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import retrui.models  # noqa: F401
from retrui.api.deps import get_context
from retrui.config import Settings
from retrui.core.context import AppContext
from tests.helpers import FakeClock, FakeSleep, FeedServer


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def server() -> FeedServer:
    return FeedServer()


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """创建测试用的数据库会话工厂（临时文件数据库）."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        ssrf_resolve_dns=False,
        cache_backend="memory",
        cron_secret="s3cret",
    )


@pytest.fixture
async def context(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    server: FeedServer,
    clock: FakeClock,
    fake_sleep: FakeSleep,
) -> AsyncGenerator[AppContext, None]:
    """组装好的应用上下文（假服务器 + 假时钟 + 临时数据库）."""
    ctx = await AppContext.create(
        settings,
        session_factory,
        transport=server.transport(),
        clock=clock,
        sleep=fake_sleep,
    )
    yield ctx
    await ctx.close()


@pytest.fixture
async def client(context: AppContext) -> AsyncGenerator[AsyncClient, None]:
    """创建测试用的 HTTP 客户端."""
    from retrui.main import app, rate_limiter

    rate_limiter.reset()
    app.dependency_overrides[get_context] = lambda: context

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    rate_limiter.reset()
