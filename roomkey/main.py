"""
RoomKey 主应用入口
酒店 RFID 门禁：房间 / 凭证 / 入住记录状态协调
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from roomkey import __version__
from roomkey.config import settings
from roomkey.database import init_db, SessionLocal
from roomkey.routers import hotel, rfid, rooms, occupancy, scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # 初始化数据库
    init_db()

    # 注册站内通知渠道与事件处理器
    from core.notification import NotificationChannelRegistry
    from roomkey.notification import InternalChannel
    from roomkey.services.event_handlers import register_event_handlers
    NotificationChannelRegistry().register(InternalChannel(SessionLocal))
    register_event_handlers()

    # 启动到期扫描
    from core.scheduler import SchedulerRegistry
    backend = None
    if settings.SCHEDULER_ENABLED:
        from roomkey.scheduler import APSchedulerBackend, register_stay_jobs
        backend = APSchedulerBackend()
        register_stay_jobs(backend)
        SchedulerRegistry().set_backend(backend)
        backend.start()
    else:
        logger.info("Scheduler disabled by configuration")

    yield

    if backend is not None:
        backend.shutdown()
        SchedulerRegistry().clear()


# 创建应用
app = FastAPI(
    title="RoomKey - 酒店门禁与入住状态服务",
    description="RFID 刷卡验证、前台登记与到期自动退房",
    version=__version__,
    lifespan=lifespan
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(hotel.router)
app.include_router(rfid.router)
app.include_router(rooms.router)
app.include_router(occupancy.router)
app.include_router(scheduler.router)


@app.get("/")
def root():
    """根路径"""
    return {
        "name": settings.APP_NAME,
        "version": __version__,
        "description": "酒店 RFID 门禁与入住状态服务"
    }


@app.get("/health")
def health_check():
    """健康检查"""
    return {"status": "healthy"}
