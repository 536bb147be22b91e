"""
Request validation: path identifiers and payload shapes. Structural checks only;
existence and ownership are decided by the repositories and the order service.
"""
import re
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StrictInt,
    StringConstraints,
    ValidationError,
    field_validator,
)

from storefront.errors import BadRequestError

# Ids and quantities live in Postgres INT columns
MAX_INT4 = 2**31 - 1

_ID_RE = re.compile(r"^[0-9]+$")


def is_valid_id(raw: Any) -> bool:
    """True if raw is an integer in 0..MAX_INT4, given as an int or a string of ASCII digits."""
    if isinstance(raw, bool):
        return False
    if isinstance(raw, str):
        if not _ID_RE.match(raw) or len(raw) > len(str(MAX_INT4)):
            return False
        raw = int(raw)
    return isinstance(raw, int) and 0 <= raw <= MAX_INT4


def parse_id(raw: Any, kind: str) -> int:
    """Parse a path identifier; kind names it in the error (user, order, order item)."""
    if not is_valid_id(raw):
        raise BadRequestError(f"The {kind} id is not a valid number")
    return int(raw)


Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
IdField = Annotated[StrictInt, Field(ge=0, le=MAX_INT4)]


class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore")


class UserUpdate(_Body):
    firstName: Name
    lastName: Name
    email: EmailStr

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.lower()


class UserInput(UserUpdate):
    # Credential material is passed through untouched
    password: str = Field(..., min_length=6, max_length=255)


class CreateOrderBody(_Body):
    userId: IdField


class OrderBody(_Body):
    id: IdField
    userId: IdField
    status: str


class OrderItemBody(_Body):
    id: IdField | None = None
    productId: IdField
    quantity: StrictInt = Field(..., ge=1, le=MAX_INT4)


SCHEMAS: dict[str, type[BaseModel]] = {
    "user_input": UserInput,
    "user_update": UserUpdate,
    "create_order": CreateOrderBody,
    "order": OrderBody,
    "order_item": OrderItemBody,
}


def _first_message(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    msg = err.get("msg", "Invalid input")
    # Custom validators come through as "Value error, <text>"
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return f"{loc}: {msg}" if loc else msg


def validate(kind: str, payload: Any) -> BaseModel:
    """Validate payload against the named schema; raise BadRequestError with the first error message."""
    schema = SCHEMAS[kind]
    if not isinstance(payload, dict):
        raise BadRequestError("The request body must be a JSON object")
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        raise BadRequestError(_first_message(e)) from e


def validate_order_item(payload: Any, require_id: bool = False) -> OrderItemBody:
    body = validate("order_item", payload)
    if require_id and body.id is None:
        raise BadRequestError("id: Field required")
    return body
