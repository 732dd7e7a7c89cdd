# app/utils/money.py
# 金額一律為整數 (最小貨幣單位，例如 cents)，幣別為小寫 ISO 代碼
import re
from typing import Tuple

CURRENCY_PATTERN = re.compile(r"^[a-z]{3}$")


def normalize_currency(code: str) -> str:
    """
    統一轉成小寫三碼幣別 (CHF -> chf)；格式不符丟 ValueError，
    讓 pydantic validator 轉成 422。
    """
    value = (code or "").strip().lower()
    if not CURRENCY_PATTERN.match(value):
        raise ValueError("幣別必須是三碼 ISO 代碼，例如 chf、eur")
    return value


def split_platform_fee(price: int, fee_percent: int) -> Tuple[int, int]:
    """
    回傳 (平台抽成, 專家實拿)。抽成無條件捨去，
    兩者相加永遠等於 price。
    """
    if price < 0:
        raise ValueError("金額不可為負數")
    platform_fee = price * fee_percent // 100
    return platform_fee, price - platform_fee
