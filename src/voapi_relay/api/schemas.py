import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, Field, StringConstraints

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

_INTEGER_TEXT = re.compile(r"^[-+]?(0|[1-9][0-9]*)$")


def _whole_number(value: Any) -> Any:
    """Integers and integer strings only; booleans and floats are rejected."""
    if isinstance(value, (bool, float)):
        raise ValueError("must be an integer")
    if isinstance(value, str):
        if not _INTEGER_TEXT.match(value.strip()):
            raise ValueError("must be an integer")
        return int(value.strip())
    return value


WholeNumber = Annotated[int, BeforeValidator(_whole_number)]


class RedemptionCodeRequest(BaseModel):
    username: NonEmptyStr
    name: NonEmptyStr
    quota: WholeNumber = Field(..., ge=1)
    count: WholeNumber = Field(..., ge=1)


class TokenRequest(BaseModel):
    name: NonEmptyStr
    remain_quota: WholeNumber = Field(..., ge=1)
    expired_time: WholeNumber = Field(..., description="Unix time; -1 means the token never expires")
    unlimited_quota: bool
    model_limits_enabled: bool
    model_limits: str = ""
    allow_ips: str = ""
    group: str = ""


class RedemptionCodeResponse(BaseModel):
    success: Literal[True] = True
    data: Any


class TokenResponse(BaseModel):
    success: Literal[True] = True
    data: str = Field(..., description="The sk- prefixed token key")


class HealthResponse(BaseModel):
    status: str = "OK"
