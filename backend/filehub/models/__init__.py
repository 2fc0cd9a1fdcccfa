"""Import all models so SQLAlchemy metadata knows about them."""
from filehub.models.base import Base
from filehub.models.file_record import FileRecord
from filehub.models.setting import Setting

__all__ = ["Base", "FileRecord", "Setting"]
