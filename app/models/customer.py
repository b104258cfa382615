from sqlalchemy import Column, ForeignKey, String

from app.database import Base
from app.models.base import BaseModel


class Customer(Base, BaseModel):
	__tablename__ = "customers"

	organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
	first_name = Column(String(100))
	last_name = Column(String(100))
	phone = Column(String(20), index=True)
