import enum

from sqlalchemy import Column, ForeignKey, String, Enum, Boolean

from app.database import Base
from app.models.base import BaseModel


class UserRole(str, enum.Enum):
	OWNER = "owner"
	ADMIN = "admin"
	TECHNICIAN = "technician"


class User(Base, BaseModel):
	__tablename__ = "users"

	organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
	email = Column(String(255), unique=True, nullable=False, index=True)
	first_name = Column(String(100))
	last_name = Column(String(100))
	role = Column(Enum(UserRole), nullable=False, default=UserRole.TECHNICIAN)
	is_active = Column(Boolean, default=True)

	@property
	def display_name(self) -> str:
		return f"{self.first_name or ''} {self.last_name or ''}".strip()
