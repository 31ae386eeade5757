from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from agentflow.config import settings

def build_engine(url: str = settings.DATABASE_URL, echo: bool = settings.DATABASE_ECHO) -> AsyncEngine:
    return create_async_engine(url, echo=echo)

def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )

engine = build_engine()

AsyncSessionLocal = build_session_factory(engine)

class Base(DeclarativeBase):
    pass

async def create_all(bind: AsyncEngine) -> None:
    import agentflow.models  # noqa: F401  register tables

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
