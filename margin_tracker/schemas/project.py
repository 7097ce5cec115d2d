from datetime import date
from typing import Literal, Optional
from pydantic import Field, field_validator, model_validator

from margin_tracker.schemas.base import CamelModel, reject_null


class ProjectCreate(CamelModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    client_name: Optional[str] = None
    currency: str = "EUR"
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ProjectUpdate(CamelModel):
    """Full edit form of a project; only the keys sent are applied."""
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    client_name: Optional[str] = None
    currency: Optional[str] = None
    status: Optional[Literal["active", "completed", "on-hold", "archived"]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("name", "currency", "status")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class ProjectPatch(CamelModel):
    """Quick edit of status and timeline."""
    status: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("status")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date:
            if self.end_date < self.start_date:
                raise ValueError("End date must be after start date")
        return self


class AssignClientRequest(CamelModel):
    client_id: str
