from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

SUCCESS_TYPE = "GOOGLE_AUTH_SUCCESS"
ERROR_TYPE = "GOOGLE_AUTH_ERROR"


class SuccessMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    type: Literal["GOOGLE_AUTH_SUCCESS"] = SUCCESS_TYPE
    email: Optional[str] = None
    token: Optional[str] = None
    timestamp: int = Field(ge=0)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ErrorMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    type: Literal["GOOGLE_AUTH_ERROR"] = ERROR_TYPE
    error: Optional[str] = None
    timestamp: int = Field(ge=0)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


HandshakeMessage = Annotated[Union[SuccessMessage, ErrorMessage], Field(discriminator="type")]

_adapter: TypeAdapter = TypeAdapter(HandshakeMessage)


def parse_handshake_message(data: Any) -> Optional[Union[SuccessMessage, ErrorMessage]]:
    """Validate a received payload; anything outside the union is None."""
    if not isinstance(data, dict):
        return None
    try:
        return _adapter.validate_python(data)
    except ValidationError as e:
        logger.debug("Dropping handshake payload: %d validation errors", e.error_count())
        return None
