"""
Request parsing shared by the service layer.
"""

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from cleanmatch.errors import InvalidArgumentError

RequestT = TypeVar("RequestT", bound=BaseModel)


def parse_request(model: type[RequestT], payload: RequestT | dict[str, Any]) -> RequestT:
    """Validate ``payload`` into ``model``; validation failures become InvalidArgumentError."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
        raise InvalidArgumentError(
            "Missing or invalid required fields", details={"fields": fields}
        ) from e
