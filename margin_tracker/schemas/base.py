from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request body accepting both ``camelCase`` (UI) and ``snake_case`` keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def reject_null(value):
    """Partial updates may omit a non-nullable column but not send it as null."""
    if value is None:
        raise ValueError("may not be null")
    return value
