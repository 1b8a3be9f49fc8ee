from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def build_database_url(raw_url: str) -> str:
    if raw_url.startswith("postgres://"):
        return raw_url.replace("postgres://", "postgresql+psycopg://", 1)
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


class Database:
    """Engine and transaction scope shared by the SQL-backed stores."""

    def __init__(self, url: str) -> None:
        if not url:
            raise RuntimeError("DATABASE_URL is not configured")
        self.url = build_database_url(url)
        engine_options = {"pool_pre_ping": True}
        if self.url.startswith("sqlite"):
            engine_options["connect_args"] = {"check_same_thread": False}
            if self.url in {"sqlite://", "sqlite:///:memory:"}:
                # One shared connection, otherwise every checkout sees an empty database.
                engine_options["poolclass"] = StaticPool
        self.engine = create_engine(self.url, **engine_options)
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    def init_db(self) -> None:
        from secureauth.models import otp as _otp  # noqa: F401
        from secureauth.models import session as _session  # noqa: F401
        from secureauth.models import user as _user  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session_scope(self):
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
