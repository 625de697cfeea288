"""
Pydantic schemas mirroring the REST contract.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .. import ANIMATION_STATES

Scalar = Union[str, int, float, bool]


class AddItemRequest(BaseModel):
    app_token: str = Field(validation_alias=AliasChoices("appToken", "app_token"))
    subcomposition_id: str = Field(
        validation_alias=AliasChoices("subCompositionId", "subcompId", "subcomposition_id")
    )
    rundown_id: str = Field(default="rundown-1", validation_alias=AliasChoices("rundownId", "rundown_id"))
    after: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("after", mode="before")
    @classmethod
    def _normalise_after(cls, value: object) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value)


class CreatedResponse(BaseModel):
    id: str


class MoveRequest(BaseModel):
    to: str

    @field_validator("to", mode="before")
    @classmethod
    def _stringify(cls, value: object) -> str:
        result = str(value if value is not None else "").strip()
        if not result:
            raise ValueError("to is required")
        return result


class OrderResponse(BaseModel):
    order: List[str]


class StateRequest(BaseModel):
    state: str

    @field_validator("state")
    @classmethod
    def _validate_state(cls, value: str) -> str:
        if value not in ANIMATION_STATES:
            raise ValueError(f"state must be one of {', '.join(ANIMATION_STATES)}")
        return value


class DispatchRequest(BaseModel):
    state: Optional[str] = None
    include_state: bool = Field(
        default=True, validation_alias=AliasChoices("includeState", "include_state")
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("state")
    @classmethod
    def _validate_state(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in ANIMATION_STATES:
            raise ValueError(f"state must be one of {', '.join(ANIMATION_STATES)}")
        return value


class DispatchResultModel(BaseModel):
    rowId: str
    state: Optional[str] = None
    ok: bool
    statusCode: Optional[int] = None
    error: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    finishedAt: float


class ConnectionRequest(BaseModel):
    label: str
    model: Union[Dict[str, Any], str]
    type: str = "singular"


class ConnectionModel(BaseModel):
    appToken: str
    label: str
    type: str
    updatedAt: Optional[int] = None


class VariableRequest(BaseModel):
    name: str
    value: str = ""
    description: str = ""


class ControlItemModel(BaseModel):
    id: Union[int, str]
    subCompositionId: Optional[str] = None
    subCompositionName: Optional[str] = None
    rundownName: Optional[str] = None
    state: Optional[str] = None
    payload: Dict[str, Scalar] = Field(default_factory=dict)


class OkResponse(BaseModel):
    ok: bool = True
