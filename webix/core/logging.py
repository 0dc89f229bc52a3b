"""
日志配置

使用 structlog 输出结构化日志：
- development: 彩色控制台输出
- production: JSON 行输出，便于日志聚合

tenant_key / request_id 通过 contextvars 自动附加到每条日志
"""

import logging
import sys
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

from webix.core.config import settings


HANDLER_NAME = "webix"


def setup_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """
    初始化 structlog 与标准库 logging

    structlog 事件交给标准库 logger，再由根 logger 上唯一的 stdout handler
    统一渲染；uvicorn / sqlalchemy 等第三方日志走同一条渲染链。
    重复调用会替换上一次安装的 handler。
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    if json_logs is None:
        json_logs = settings.LOG_JSON or settings.is_production

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        renderer: Any = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    remove_logging_handler(root)
    root.addHandler(handler)
    root.setLevel(level_name)


def remove_logging_handler(root: logging.Logger | None = None) -> None:
    """移除 setup_logging 安装的 handler，其它 handler 保持不变"""
    root = root or logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
            existing.close()


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """获取 logger"""
    return structlog.get_logger(name)


def bind_request_context(**values: Any) -> None:
    """绑定请求级日志上下文（tenant_key、request_id 等）"""
    bind_contextvars(**values)


def clear_request_context() -> None:
    clear_contextvars()
