"""Common models and types"""
from enum import Enum
from typing import Optional
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from datetime import datetime


class Designation(str, Enum):
    PRINCIPAL = "P"
    AUTHORIZED = "A"
    JOINT = "J"
    UNAUTHORIZED = "U"


class MatchMethod(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class DonorType(str, Enum):
    INDIVIDUAL = "Individual"
    PAC = "PAC"
    PARTY = "Party"
    ORGANIZATION = "Organization"
    UNKNOWN = "Unknown"


class ReconciliationStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


class FinanceBadge(str, Enum):
    NO_DATA = "no_data"
    PARTIAL = "partial"
    BALANCED = "balanced"
    WARNING = "warning"
    ERROR = "error"


class BaseEntity(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class CamelModel(BaseModel):
    """Request/response bodies exchanged with operators and schedulers"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        use_enum_values = True
