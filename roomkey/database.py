"""
数据库配置 - 持久化层
所有跨实体一致性依赖条件更新（UPDATE ... WHERE status = 期望状态），不使用进程内锁
"""
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base

from roomkey.config import settings

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

_is_sqlite = SQLALCHEMY_DATABASE_URL.startswith("sqlite")

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args=(
        {"check_same_thread": False, "timeout": settings.DB_TIMEOUT_SECONDS}
        if _is_sqlite else {}
    ),
    pool_pre_ping=not _is_sqlite,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """依赖注入：获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """初始化数据库表"""
    from roomkey.models import ontology  # noqa
    Base.metadata.create_all(bind=engine)

    if _is_sqlite and ":memory:" not in SQLALCHEMY_DATABASE_URL:
        # 启用 WAL 模式，刷卡与定时任务并发写入
        with engine.connect() as conn:
            conn.execute(text("PRAGMA journal_mode=WAL"))
            conn.execute(text("PRAGMA synchronous=NORMAL"))
            conn.commit()
