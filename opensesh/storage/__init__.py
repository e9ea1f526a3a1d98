from .database import Base, async_session_maker, build_engine, build_session_maker, engine, init_db

__all__ = [
    "Base",
    "async_session_maker",
    "build_engine",
    "build_session_maker",
    "engine",
    "init_db",
]
