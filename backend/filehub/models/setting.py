"""Setting model - runtime policy key/value pairs editable by admins."""
from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column
from filehub.models.base import Base, TimestampMixin


class Setting(Base, TimestampMixin):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
