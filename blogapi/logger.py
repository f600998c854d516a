"""Loguru setup and request logging."""

from __future__ import annotations

import logging
import sys
import time
import uuid
from contextvars import ContextVar

from fastapi import FastAPI, Request
from loguru import logger

_FMT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<lvl>{level:<8}</lvl> | "
    "<magenta>{extra[request_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<lvl>{message}</lvl>"
)

_REQUEST_ID: ContextVar[str] = ContextVar("request_id", default="-")


def _patch_request_id(record) -> None:
    record["extra"].setdefault("request_id", _REQUEST_ID.get())


class _InterceptHandler(logging.Handler):
    """Route stdlib logging (uvicorn, pymongo) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = str(record.levelno)
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO") -> None:
    level = level.upper()
    logger.remove()
    logger.configure(patcher=_patch_request_id)
    logger.add(
        sys.stderr,
        level=level,
        format=_FMT,
        colorize=True,
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = [_InterceptHandler()]
        logging.getLogger(name).propagate = False
    logging.getLogger("pymongo").setLevel(logging.WARNING)


def bind_request_logging(app: FastAPI) -> None:
    @app.middleware("http")
    async def _log_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        token = _REQUEST_ID.set(request_id)
        t0 = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            _REQUEST_ID.reset(token)
        dt = (time.perf_counter() - t0) * 1000.0
        ip = request.client.host if request.client else "unknown"
        with logger.contextualize(request_id=request_id):
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} in {dt:.1f} ms from {ip}"
            )
        response.headers["X-Request-ID"] = request_id
        return response
