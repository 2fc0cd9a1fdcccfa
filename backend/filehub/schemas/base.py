"""camelCase base models for the filehub API.

Python attributes stay snake_case (`content_id`, `size_bytes`); request and
response JSON uses camelCase (`contentId`, `sizeBytes`). Either spelling is
accepted on input.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CamelModel(BaseModel):
    """Request bodies and plain responses."""
    model_config = _CAMEL


class CamelORMModel(CamelModel):
    """Responses built from ORM rows such as FileRecord."""
    model_config = ConfigDict(**_CAMEL, from_attributes=True)
