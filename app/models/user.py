# models/user.py
import uuid
import enum
from sqlalchemy import Column, String, Boolean, Enum, TIMESTAMP
from sqlalchemy.dialects.mysql import CHAR  # 針對 MySQL 的 UUID
from sqlalchemy.orm import relationship
from datetime import datetime
from app.core.database import Base

# 對應 SQL 中的 ENUM 型別
class UserRoleEnum(str, enum.Enum):
    client = "client"  # 發案方
    expert = "expert"  # 專家
    admin = "admin"    # 平台管理員 (爭議仲裁)

class User(Base):
    __tablename__ = "users"

    # 基本欄位
    user_id = Column(CHAR(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255))
    role = Column(Enum(UserRoleEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.now)

    # 關聯設定
    postings = relationship(
        "Posting",
        foreign_keys="[Posting.client_id]",
        back_populates="client",
    )

    proposals = relationship(
        "Proposal",
        back_populates="expert",
    )
