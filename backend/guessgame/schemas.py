from typing import Any

from pydantic import BaseModel, Field, field_validator


class GuessBase(BaseModel):
    guess_id: str
    user_id: str
    instrument: str
    direction: str
    start_price: float
    start_time: int
    resolved: bool

    @field_validator("start_price", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> float:
        return float(value)


class Guess(GuessBase):
    end_price: float | None = None
    correct: bool | None = None
    score_change: int | None = None
    resolved_at: int | None = None

    model_config = {"from_attributes": True}

    @field_validator("end_price", mode="before")
    @classmethod
    def _coerce_optional_decimal(cls, value: Any) -> float | None:
        if value is None:
            return None
        return float(value)


class GuessHistory(BaseModel):
    total: int
    items: list[Guess]


class GuessCreate(BaseModel):
    direction: str = Field(description="Either 'up' or 'down'")
    instrument: str | None = Field(
        default=None, description="Instrument symbol; defaults to the configured instrument"
    )


class User(BaseModel):
    user_id: str
    email: str
    score: int
    created_at: int
    updated_at: int

    model_config = {"from_attributes": True}


class UserProfile(User):
    active_guess: Guess | None = None


class UserConfirmation(BaseModel):
    user_id: str
    email: str | None = None


class ConfirmationResult(BaseModel):
    user_id: str
    created: bool


class PriceQuote(BaseModel):
    instrument: str
    price: float
    timestamp: int
    source: str

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> float:
        return float(value)


class ErrorResponse(BaseModel):
    code: str
    detail: str
