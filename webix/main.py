"""
Webix Udirdlaga 多租户后端 - 主入口

职责:
- 控制面：组织注册与管理、平台管理员、组织用户认证
- 租户路由：按子域名把请求路由到各组织独立的数据库
- 租户业务：租户用户认证与管理、租借记录
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from webix import __version__
from webix.api import router as api_router
from webix.core.config import Settings, settings as default_settings
from webix.core.logging import get_logger, setup_logging
from webix.middleware import (
    TENANT_REQUEST_ERRORS_TOTAL,
    MetricsMiddleware,
    RequestContextMiddleware,
    metrics_endpoint,
)
from webix.tenancy.errors import TenancyError
from webix.tenancy.manager import TenancyManager

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    应用生命周期管理

    启动时建立控制面连接（失败则启动失败），停机时关闭全部连接
    """
    setup_logging()
    tenancy = TenancyManager(app.state.settings)
    await tenancy.start()
    app.state.tenancy = tenancy
    logger.info("application_started", version=__version__)
    try:
        yield
    finally:
        await tenancy.shutdown()
        app.state.tenancy = None


async def tenancy_error_handler(request: Request, exc: TenancyError) -> JSONResponse:
    """多租户错误 -> HTTP 响应"""
    TENANT_REQUEST_ERRORS_TOTAL.labels(code=exc.code).inc()
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(
        "tenancy_error",
        code=exc.code,
        status_code=exc.status_code,
        tenant_key=exc.tenant_key,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """创建 FastAPI 应用实例"""
    app_settings = app_settings or default_settings

    app = FastAPI(
        title="Webix Udirdlaga - Multi-tenant Backend",
        description="组织控制面 × 每租户独立数据库 × 租户用户与租借",
        version=__version__,
        docs_url="/docs" if app_settings.DEBUG else None,
        redoc_url="/redoc" if app_settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.tenancy = None

    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(TenancyError, tenancy_error_handler)

    app.include_router(api_router, prefix="/api")
    app.add_route("/metrics", metrics_endpoint, include_in_schema=False)

    @app.get("/health")
    async def health_check() -> dict:
        """健康检查端点"""
        return {"status": "healthy", "service": "webix-udirdlaga", "version": __version__}

    return app


app = create_app()
