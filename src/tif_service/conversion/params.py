import re
from dataclasses import dataclass

from .errors import ParamsInvalid

ID_PATTERN = re.compile(r"[0-9a-fA-F]{24}")
ID_LENGTH = 24
FORMATS = ("jpg", "png")


@dataclass(frozen=True)
class ConvertParams:
    id: str
    type: str


def _check_id(value: str | None) -> str | None:
    if value is None or value == "":
        return '"id" is required'
    if len(value) != ID_LENGTH:
        return f'"id" length must be {ID_LENGTH} characters long'
    if not ID_PATTERN.fullmatch(value):
        return f'"id" with value "{value}" fails to match the required pattern: /{ID_PATTERN.pattern}/'
    return None


def _check_type(value: str | None) -> str | None:
    if value is None or value == "":
        return '"type" is required'
    if value.lower() not in FORMATS:
        return f'"type" must be one of [{", ".join(FORMATS)}]'
    return None


def validate_id(record_id: str | None) -> str:
    """Validate the id of the original-file route. Raises ParamsInvalid."""
    message = _check_id(record_id)
    if message:
        raise ParamsInvalid([message])
    return record_id  # type: ignore[return-value]


def validate_convert(record_id: str | None, type_: str | None) -> ConvertParams:
    """Validate id and type together, reporting every failing field.

    The type is case-normalized to lowercase on success.
    """
    messages = [m for m in (_check_id(record_id), _check_type(type_)) if m]
    if messages:
        raise ParamsInvalid(messages)
    return ConvertParams(id=record_id, type=type_.lower())  # type: ignore[arg-type, union-attr]
