from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class TokenCredentials(BaseModel):
    """Authentication token issued by the server."""

    model_config = ConfigDict(extra="allow")

    token: str


class PasswordCredentials(BaseModel):
    """Username/password pair; the server names the user field ``email``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    email: str = Field(validation_alias=AliasChoices("email", "username"))
    password: str = Field(repr=False)


Credentials = Union[TokenCredentials, PasswordCredentials]


def parse_credentials(raw: Credentials | Mapping[str, Any]) -> Credentials:
    """Coerce a mapping into the matching credentials model (token wins)."""

    if isinstance(raw, (TokenCredentials, PasswordCredentials)):
        return raw
    if not isinstance(raw, Mapping):
        raise TypeError(f"Unsupported credentials type {type(raw).__name__}")
    if raw.get("token"):
        return TokenCredentials.model_validate(raw)
    return PasswordCredentials.model_validate(raw)


class Notification(BaseModel):
    """Server push message (JSON-RPC request without an id)."""

    method: str
    params: Dict[str, Any] = Field(default_factory=dict)


class ObjectsChange(BaseModel):
    """Payload of the ``all`` object feed."""

    model_config = ConfigDict(extra="allow")

    type: str = "enter"
    items: Union[List[Dict[str, Any]], Dict[str, Dict[str, Any]]] = Field(default_factory=list)

    @property
    def is_exit(self) -> bool:
        return self.type == "exit"


def iter_items(items: Any) -> Iterable[Dict[str, Any]]:
    """Yield objects from a list or an id-keyed mapping."""

    if items is None:
        return ()
    if isinstance(items, Mapping):
        return list(items.values())
    return list(items)


class RpcRequest(BaseModel):
    jsonrpc: str = "2.0"
    id: Optional[int] = None
    method: str
    params: Any = None


class RpcError(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: Optional[int] = None
    message: str = "Unknown error"
    data: Any = None


class RpcResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    jsonrpc: str = "2.0"
    id: Optional[int] = None
    result: Any = None
    error: Optional[RpcError] = None
