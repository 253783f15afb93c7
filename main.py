# main.py
import uuid
from contextlib import asynccontextmanager
from time import time

from fastapi import FastAPI, Request

from app.scripts.logging_config import setup_logging, get_logger, set_request_id
from app.services import firebase_app
from app.services.app_services import build_app_services
from config import settings

# 1) 로깅 설정(최우선)
setup_logging(json_fmt=settings.LOG_JSON, level=settings.LOG_LEVEL)
logger = get_logger(__name__)

# 2) Firebase 초기화 (자격 증명이 없으면 in-memory 백엔드로 동작)
firebase_app.init_firebase()


# 3) 서비스 수명주기: 프로세스당 한 번 생성, 종료 시 정리
@asynccontextmanager
async def lifespan(app: FastAPI):
    services = build_app_services()
    app.state.services = services
    try:
        yield
    finally:
        await services.aclose()


# 4) FastAPI 앱
app = FastAPI(title="PawMap Missing & Found Pets API", lifespan=lifespan)

# 5) 요청 로깅 미들웨어
@app.middleware("http")
async def log_requests(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    set_request_id(rid)

    start = time()
    path = request.url.path
    method = request.method
    query = request.url.query
    client_ip = getattr(request.client, 'host', '-') if request.client else '-'
    ua = request.headers.get('user-agent', '')[:120]

    body_preview = ""
    try:
        if method in {"POST", "PUT", "PATCH"}:
            if request.headers.get("content-type", "").startswith("multipart/"):
                body_preview = "<multipart>"
            else:
                body_bytes = await request.body()
                if body_bytes:
                    body_preview = body_bytes[:300].decode('utf-8', 'ignore')
                    if len(body_bytes) > 300:
                        body_preview += "..."
    except Exception:
        body_preview = "<unreadable>"

    if method == 'GET' and query:
        logger.info("REQ start %s %s?%s ip=%s ua=%r", method, path, query, client_ip, ua)
    else:
        logger.info("REQ start %s %s ip=%s ua=%r body=%r", method, path, client_ip, ua, body_preview)

    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        duration = (time() - start) * 1000
        status = getattr(response, 'status_code', 'NA')
        size = response.headers.get('content-length', '-') if response is not None else '-'

        if method == 'GET' and query:
            logger.info("REQ end %s %s?%s status=%s %.1fms size=%s", method, path, query, status, duration, size)
        else:
            logger.info("REQ end %s %s status=%s %.1fms size=%s", method, path, status, duration, size)

# 6) CORS (optional)
try:
    from fastapi.middleware.cors import CORSMiddleware
    allowed_origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info("CORS middleware configured for %s", allowed_origins)
except Exception as e:
    logger.warning("CORS middleware not added: %s", e)

# 7) 라우터
from app.api import geo, reports, session

app.include_router(geo.router)
app.include_router(reports.router)
app.include_router(session.router)

# 8) 엔드포인트
@app.get("/")
def root():
    return {"message": "PawMap backend", "routes": [
        "/geo/search",
        "/geo/reverse",
        "/reports/{category}",
        "/session/ws",
    ]}
