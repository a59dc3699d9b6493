import json
from typing import Any, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from app.core.exceptions import ValidationError

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_json_field(raw: str, field: str) -> Any:
    """Decode a JSON-encoded multipart form field."""
    try:
        return json.loads(raw)
    except ValueError:
        raise ValidationError(f"{field} must be valid JSON", [{"field": field}])


def build_schema(schema: Type[SchemaT], **values: Any) -> SchemaT:
    """Validate form or query values into ``schema``; fields left as None fall back to defaults."""
    try:
        return schema.model_validate({key: value for key, value in values.items() if value is not None})
    except SchemaValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        raise ValidationError(errors[0]["message"] if errors else "Invalid input", errors)
