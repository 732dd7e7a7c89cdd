import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.routers import (
    auth_router, posting_router,
    engagement_router, booking_router, review_router
)

# "payment_router.py" 中有 *兩個* router (付款 / 撥款)
from app.routers.payment_router import (
    router as payment_main_router,
    payout_router
)

# --- 匯入所有 Model 檔案 ---
# 都在應用程式啟動時被 SQLAlchemy 註冊。
from app.models import user
from app.models import posting
from app.models import proposal
from app.models import booking
from app.models import engagement
from app.models import payment
from app.models import review


# 設定基礎日誌
logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__) # 建立一個 logger 實例

app = FastAPI(title="Expert Marketplace API")

# --- 設定 CORS (跨來源資源共用) ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"], # 允許所有 HTTP 方法
    allow_headers=["*"], # 允許所有 HTTP 標頭
)

# --- 統一的錯誤回應格式 ---
register_exception_handlers(app)

# --- 根路徑 ---
@app.get("/")
def read_root():
    return {"status": "success", "message": "Backend is running!"}

# --- 載入 API 路由 ---
app.include_router(auth_router.router)
app.include_router(posting_router.router)
app.include_router(booking_router.router)
app.include_router(engagement_router.router)
app.include_router(review_router.router)
app.include_router(payment_main_router)
app.include_router(payout_router)
