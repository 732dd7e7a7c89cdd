# app/core/exceptions.py
# 業務錯誤分類，以及轉成 {success: false, error, message} 回應的處理器
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class MarketplaceError(HTTPException):
    """
    所有業務錯誤的基底。
    保留 HTTPException 的行為 (status_code / detail)，另外帶一個 kind，
    讓前端可以依錯誤種類決定下一步 (重新整理、換個動作、修正輸入...)。
    """
    kind = "MarketplaceError"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "操作失敗"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(status_code=self.status_code, detail=self.message)


class ValidationError(MarketplaceError):
    """輸入格式錯誤或缺漏，修正後可重送；不會有任何狀態變更"""
    kind = "ValidationError"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "輸入資料不正確"


class UnauthorizedError(MarketplaceError):
    """呼叫端身分無法驗證 (例如金流通知的簽章不符)"""
    kind = "UnauthorizedError"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "身分驗證失敗"


class NotEligibleError(MarketplaceError):
    """權限或前置條件不符 (不是當事人、角色不對、專案尚未完成...)"""
    kind = "NotEligibleError"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "你無權執行此操作"


class NotFoundError(MarketplaceError):
    kind = "NotFoundError"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "資源不存在"


class IllegalTransitionError(MarketplaceError):
    """狀態機不允許目前狀態執行此動作，前端應重新取得最新狀態"""
    kind = "IllegalTransitionError"
    status_code = status.HTTP_409_CONFLICT
    default_message = "不合法的狀態轉移"


class PostingClosedError(MarketplaceError):
    kind = "PostingClosedError"
    status_code = status.HTTP_409_CONFLICT
    default_message = "此案件目前不接受提案"


class RevisionLimitExceededError(MarketplaceError):
    """修改次數已用完，只能驗收或提出爭議"""
    kind = "RevisionLimitExceededError"
    status_code = status.HTTP_409_CONFLICT
    default_message = "修改次數已用完，請驗收或提出爭議"


class PaymentFailedError(MarketplaceError):
    kind = "PaymentFailedError"
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "付款失敗"


class ConcurrencyConflictError(MarketplaceError):
    """
    樂觀並行控制的輸家。
    同樣的參數再送一次也不會成功，前端不應自動重試。
    """
    kind = "ConcurrencyConflictError"
    status_code = status.HTTP_409_CONFLICT
    default_message = "資料已被其他操作變更"


class AlreadyAssignedError(ConcurrencyConflictError):
    kind = "AlreadyAssignedError"
    default_message = "此案件已指派給其他專家"


class DuplicateProposalError(ConcurrencyConflictError):
    kind = "DuplicateProposalError"
    default_message = "你已對此案件提交過提案"


class DuplicateReviewError(ConcurrencyConflictError):
    kind = "DuplicateReviewError"
    default_message = "你已評價過此專案"


def error_body(kind: str, message: str) -> dict:
    return {"success": False, "error": kind, "message": message, "data": None}


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    # 被拒絕的操作一律回報給呼叫端，這裡只額外留一筆 log
    logger.warning(f"{request.method} {request.url.path} 被拒絕: {exc.kind} - {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.kind, exc.message))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # 將 FastAPI 的 422 也包成同樣的錯誤格式
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{location}: {first.get('msg')}" if location else ValidationError.default_message
    logger.warning(f"{request.method} {request.url.path} 輸入驗證失敗: {message}")
    return JSONResponse(
        status_code=ValidationError.status_code,
        content=error_body(ValidationError.kind, message),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
