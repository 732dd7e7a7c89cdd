# app/utils/revision_ledger.py
"""
專案的修改次數規則。

可修改次數是一個二選一的值：`Bounded(n)` 或 `Unlimited()`。
服務方案上用 -1 代表無限、資料庫欄位用 NULL 代表無限，
這兩種表示法只在邊界轉換，業務邏輯裡不對魔術數字做加減。
"""
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Bounded:
    limit: int

    def __post_init__(self):
        if self.limit < 0:
            raise ValueError("修改次數上限不可為負數")


@dataclass(frozen=True)
class Unlimited:
    pass


RevisionAllowance = Union[Bounded, Unlimited]

UNLIMITED = Unlimited()
UNLIMITED_PACKAGE_VALUE = -1
UNLIMITED_WIRE_VALUE = "unlimited"


def from_column(value: Optional[int]) -> RevisionAllowance:
    """engagements.revisions_allowed 欄位 (NULL = 無限)"""
    return UNLIMITED if value is None else Bounded(value)


def to_column(allowance: RevisionAllowance) -> Optional[int]:
    return allowance.limit if isinstance(allowance, Bounded) else None


def from_package(value: int) -> RevisionAllowance:
    """服務方案上的 revisionsIncluded (-1 = 無限)"""
    if value == UNLIMITED_PACKAGE_VALUE:
        return UNLIMITED
    return Bounded(value)


def to_wire(allowance: RevisionAllowance) -> Union[int, str]:
    return allowance.limit if isinstance(allowance, Bounded) else UNLIMITED_WIRE_VALUE


def allowance_of(engagement) -> RevisionAllowance:
    return from_column(engagement.revisions_allowed)


def can_request_revision(engagement) -> bool:
    allowance = allowance_of(engagement)
    if isinstance(allowance, Unlimited):
        return True
    return engagement.revisions_used < allowance.limit


def remaining_revisions(engagement) -> Optional[int]:
    """剩餘可要求修改的次數；None 代表無限"""
    allowance = allowance_of(engagement)
    if isinstance(allowance, Unlimited):
        return None
    return max(allowance.limit - engagement.revisions_used, 0)
