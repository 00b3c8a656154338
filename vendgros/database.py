# vendgros/database.py
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool

from vendgros.config.settings import DATABASE_URL

logger = logging.getLogger(__name__)

_IS_SQLITE = DATABASE_URL.startswith("sqlite")

engine_kwargs = {}
if _IS_SQLITE:
    engine_kwargs["connect_args"] = {"check_same_thread": False}
    # 인메모리 SQLite 는 커넥션 하나를 공유해야 테이블이 보인다
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        engine_kwargs["poolclass"] = StaticPool
else:
    engine_kwargs["pool_pre_ping"] = True

engine = create_engine(DATABASE_URL, **engine_kwargs)

if _IS_SQLITE:
    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_conn, _record):
        # ondelete=CASCADE 가 동작하려면 SQLite 는 FK 를 켜야 함
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()


logger.info("Using database: %s", DATABASE_URL.split("@")[-1])
