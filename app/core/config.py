# app/core/config.py
# 應用程式設定 (資料庫連線字串、JWT 秘鑰、平台抽成、金流設定等)
from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # 資料庫設定
    DATABASE_URL: str
    # 是否在 console 印出 SQL 語句
    DATABASE_ECHO: bool = False

    # JWT 設定
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # 平台抽成 (百分比，無條件捨去到最小貨幣單位)
    PLATFORM_FEE_PERCENT: int = 10
    # 透過提案/預約成立的專案，預設可要求修改次數
    DEFAULT_REVISIONS_ALLOWED: int = 2
    # 預約請求的有效天數
    BOOKING_EXPIRY_DAYS: int = 7

    # 金流設定 (金額皆為最小貨幣單位，例如 cents)
    MIN_CHARGE_AMOUNT: int = 100
    CHECKOUT_BASE_URL: str = "https://checkout.example.com/pay"
    PAYMENT_WEBHOOK_SECRET: str = "change-me"

    # CORS 允許的來源
    CORS_ORIGINS: List[str] = ["*"]
    # 日誌等級
    LOG_LEVEL: str = "INFO"

    # 環境變數檔案
    class Config:
        env_file = ".env"

# 建立設定實例
settings = Settings()
