"""配置模块 -- 可通过环境变量覆盖

包含任务目录、数据库路径、锁过期阈值、事件保留窗口等可配置项。
路径类配置通过函数读取（便于测试时切换环境变量），
策略常量在导入时读取一次。
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, Field, ValidationError

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TASKRELAY_DATA_DIR", "data"))


def get_tasks_dir() -> Path:
    """获取任务记录目录（file 存储后端，一个任务一个 JSON 文件）"""
    return Path(
        os.environ.get(
            "TASKRELAY_TASKS_DIR",
            str(_get_base_dir() / "tasks"),
        )
    )


def get_db_path() -> str:
    """获取 SQLite 数据库路径（sqlite 存储后端）"""
    return os.environ.get(
        "TASKRELAY_DB_PATH",
        str(_get_base_dir() / "sqlite" / "taskrelay.db"),
    )


# 长轮询默认超时（毫秒）
POLL_DEFAULT_TIMEOUT_MS: int = 30_000

# 长轮询超时上限（毫秒），超过的请求值会被截断
POLL_MAX_TIMEOUT_MS: int = 300_000

# 事件列表默认返回条数
EVENT_LIST_DEFAULT_LIMIT: int = 100

# 记录级文件锁的强制打破阈值（秒）；只覆盖单次读改写，远小于任务锁过期时间
RECORD_LOCK_BREAK_SECONDS: float = float(
    os.environ.get("TASKRELAY_RECORD_LOCK_BREAK_SECONDS", "30")
)

# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("TASKRELAY_SSE_HEARTBEAT_INTERVAL", "15")
)


class QueueSettings(BaseModel):
    """任务队列与事件总线的策略配置

    环境变量:
        TASKRELAY_STORE: 存储后端（file/sqlite）
        TASKRELAY_STALE_LOCK_SECONDS: 任务锁过期阈值（秒，默认 1800）
        TASKRELAY_EVENT_RETENTION_SECONDS: 事件保留窗口（秒，默认 3600）
        TASKRELAY_EVENT_MAX_COUNT: 内存中最多保留的事件数（默认 1000）
        TASKRELAY_WEBHOOK_TIMEOUT_S: webhook 推送超时（秒，默认 10）
    """

    store_backend: Literal["file", "sqlite"] = Field(
        default="file",
        description="任务存储后端",
    )
    stale_lock_seconds: int = Field(
        default=30 * 60,
        ge=1,
        description="in_progress 任务超过该时长未完成即视为过期锁，可被重新领取",
    )
    event_retention_seconds: int = Field(
        default=60 * 60,
        ge=1,
        description="事件在内存日志中的保留时长",
    )
    event_max_count: int = Field(
        default=1000,
        ge=1,
        description="内存日志最多保留的事件条数",
    )
    webhook_timeout_s: float = Field(
        default=10.0,
        gt=0,
        description="单次 webhook 推送超时",
    )

    @property
    def stale_after(self) -> timedelta:
        return timedelta(seconds=self.stale_lock_seconds)

    @property
    def event_retention(self) -> timedelta:
        return timedelta(seconds=self.event_retention_seconds)


_ENV_SETTINGS = {
    "TASKRELAY_STORE": "store_backend",
    "TASKRELAY_STALE_LOCK_SECONDS": "stale_lock_seconds",
    "TASKRELAY_EVENT_RETENTION_SECONDS": "event_retention_seconds",
    "TASKRELAY_EVENT_MAX_COUNT": "event_max_count",
    "TASKRELAY_WEBHOOK_TIMEOUT_S": "webhook_timeout_s",
}


def load_queue_settings() -> QueueSettings:
    """从环境变量加载 QueueSettings

    逐字段校验：无法解析、超出范围或不在可选值内的环境变量记录 warning
    并使用默认值，不阻塞启动。

    Returns:
        QueueSettings 实例
    """
    kwargs: dict = {}

    for env_var, field_name in _ENV_SETTINGS.items():
        val = os.environ.get(env_var)
        if not val:
            continue
        if field_name == "store_backend":
            val = val.lower()
        try:
            QueueSettings.model_validate({field_name: val})
        except ValidationError as e:
            log.warning(
                "invalid_queue_setting",
                env_var=env_var,
                value=val,
                fallback=QueueSettings.model_fields[field_name].default,
                error=e.errors()[0]["msg"],
            )
            continue
        kwargs[field_name] = val

    return QueueSettings(**kwargs)
