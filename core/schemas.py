"""
Pydantic schemas for task requests routed through the quota gateway.

Known skills get strict parameter schemas; unknown skills only need an object.
"""

from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
AMOUNT_PATTERN = r"^\d+\.?\d*$"
TOKEN_SYMBOL_PATTERN = r"^[A-Z0-9]+$"


def _positive_amount(value: str) -> str:
    if float(value) <= 0:
        raise ValueError("Amount must be greater than 0")
    return value


class TradeParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["quote", "swap", "buy", "sell"]
    token: str = Field(min_length=1, max_length=10, pattern=TOKEN_SYMBOL_PATTERN)
    amount: str = Field(pattern=AMOUNT_PATTERN)
    slippage: Optional[str] = Field(default=None, pattern=AMOUNT_PATTERN)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return _positive_amount(v)


class TransferParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["transfer"]
    token: str = Field(min_length=1, max_length=10, pattern=TOKEN_SYMBOL_PATTERN)
    amount: str = Field(pattern=AMOUNT_PATTERN)
    to: str = Field(pattern=ADDRESS_PATTERN)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return _positive_amount(v)


class BalanceParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["balance"]
    token: Optional[str] = Field(default=None, min_length=1, max_length=10, pattern=TOKEN_SYMBOL_PATTERN)
    wallet: Optional[str] = Field(default=None, pattern=ADDRESS_PATTERN)


class TaskRequest(BaseModel):
    """Complete task request; ``params`` is validated per skill separately."""

    skill: str = Field(min_length=1, max_length=100)
    params: Dict[str, Any] = Field(default_factory=dict)
    agent_wallet: str = Field(pattern=ADDRESS_PATTERN)
    priority: Literal["low", "normal", "high"] = "normal"


SKILL_SCHEMAS = {
    "trade": TradeParams,
    "swap": TradeParams,
    "transfer": TransferParams,
    "balance": BalanceParams,
}


def validate_task_params(skill: str, params: Any) -> Union[BaseModel, Dict[str, Any]]:
    """Validate ``params`` for ``skill``; raises ValidationError or ValueError."""
    schema = SKILL_SCHEMAS.get(skill)
    if schema is not None:
        return schema.model_validate(params)
    if not isinstance(params, dict):
        raise ValueError("Params must be an object")
    return params


def safe_validate_task_params(skill: str, params: Any) -> Dict[str, Any]:
    """Like validate_task_params but returns ``{"success": ..., "data"|"error": ...}``."""
    try:
        return {"success": True, "data": validate_task_params(skill, params)}
    except ValidationError as exc:
        message = ", ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return {"success": False, "error": message}
    except ValueError as exc:
        return {"success": False, "error": str(exc)}
