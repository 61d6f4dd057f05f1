from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base

from config import DATABASE_URL

Base = declarative_base()


def make_engine(url: str = DATABASE_URL):
    return create_async_engine(url, echo=False)


def make_session_factory(bind):
    return sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


engine = make_engine()
SessionLocal = make_session_factory(engine)


async def init_db(bind=engine):
    import models  # noqa: F401  registers the tables on Base.metadata

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
