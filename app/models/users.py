from sqlalchemy import Column, Integer, String, DateTime, Boolean
from app.database.mysql import Base
from app.utils.time_utils import utcnow


class User(Base):
    """
    인증 서비스가 관리하는 사용자 프로필의 로컬 사본

    채팅 코어는 표시 이름과 관리자 여부만 읽는다.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    display_name = Column(String(100), nullable=True)
    role = Column(String(20), default="user", nullable=False)  # user, admin
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    @property
    def public_name(self) -> str:
        return self.display_name or self.username

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"
