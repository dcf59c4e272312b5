from typing import Any

from pydantic import BaseModel, ConfigDict

# Fields stay loosely typed: the services validate each one and answer with a
# field-specific error code (invalid_amount, invalid_date, ...).


class TransactionBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Any = None
    amount: Any = None
    currency: Any = None
    categoryId: Any = None
    note: Any = None
    date: Any = None


class CategoryBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Any = None
    icon: Any = None
    color: Any = None


class MeResponse(BaseModel):
    uid: str
    email: str | None = None


class HealthResponse(BaseModel):
    storeReady: bool
    identityReady: bool
    rateLimitShared: bool
