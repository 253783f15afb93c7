# logging_config.py
import contextvars
import json
import logging
import logging.config
from datetime import datetime
from pathlib import Path

# 요청/세션 단위 식별자. HTTP 미들웨어와 WebSocket 세션이 설정
_request_id_ctx = contextvars.ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx.get("-")
        return True


def set_request_id(req_id: str):
    _request_id_ctx.set(req_id)


def get_request_id() -> str:
    return _request_id_ctx.get("-")


def get_logger(name: str = __name__) -> logging.Logger:
    return logging.getLogger(name)


LOG_DIR = Path("logs")

# 전용 파일을 갖는 로거: logger 이름 -> 파일명
DEDICATED_LOGGERS = {
    "record_sync": "record_sync.log",
    "geo_search": "geocoder.log",
}

TEXT_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | rid=%(request_id)s | %(message)s'
JSON_FORMAT = ('{"ts":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s",'
               '"request_id":"%(request_id)s","msg":"%(message)s"}')


def _rotating_file(filename: str, level: str) -> dict:
    # 매일 자정 회전, 30일 보관
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "level": level,
        "formatter": "default",
        "filters": ["request_id"],
        "filename": str(LOG_DIR / filename),
        "when": "midnight",
        "backupCount": 30,
        "encoding": "utf-8",
    }


def build_dict_config(json_fmt: bool = False, level: str = "INFO") -> dict:
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "default",
            "filters": ["request_id"],
        },
        "file_app": _rotating_file("app.log", level),
    }
    loggers = {
        "": {"level": level, "handlers": ["console", "file_app"]},
    }
    for name, filename in DEDICATED_LOGGERS.items():
        handlers[f"file_{name}"] = _rotating_file(filename, level)
        loggers[name] = {"level": level, "handlers": ["console", f"file_{name}"], "propagate": False}
    # uvicorn 로거 레벨 통일
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        loggers[name] = {"level": level}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_id": {"()": RequestIdFilter}},
        "formatters": {
            "default": {"format": JSON_FORMAT if json_fmt else TEXT_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging(json_fmt: bool = False, level: str = "INFO"):
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_dict_config(json_fmt=json_fmt, level=level))


# ===== 보조 함수 =====
def log_sync_event(event_type: str, details: dict, logger: logging.Logger | None = None):
    logger = logger or get_logger("record_sync")
    logger.info("SYNC_EVENT: %s", json.dumps({
        "timestamp": datetime.now().isoformat(),
        "event_type": event_type,
        "details": details,
    }, ensure_ascii=False, default=str))


def log_geocode(op: str, query: str, success: bool, hits: int | None = None,
                error: str | None = None, logger: logging.Logger | None = None):
    logger = logger or get_logger("geo_search")
    if success:
        logger.info("geo.%s ok q=%r hits=%s", op, query, hits)
    else:
        logger.warning("geo.%s failed q=%r err=%s", op, query, error)


def log_photo_upload(category: str, success: bool, size_bytes: int | None = None,
                     url: str | None = None, error: str | None = None,
                     logger: logging.Logger | None = None):
    logger = logger or get_logger("record_sync")
    if success:
        logger.info("photo upload ok category=%s bytes=%s url=%s", category, size_bytes, url)
    else:
        logger.warning("photo upload failed category=%s bytes=%s err=%s", category, size_bytes, error)
