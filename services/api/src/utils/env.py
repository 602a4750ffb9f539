import os
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from pydantic import ValidationError, create_model

from . import log

logger = log.get_logger(__name__)


@dataclass(frozen=True)
class EnvVarSpec:
    """Declaration of a single environment variable.

    ``parse`` converts the raw string; ``type`` is a pydantic field definition
    used by :func:`validate` to type-check the parsed value.
    """

    id: str
    default: Optional[str] = None
    parse: Optional[Callable[[str], Any]] = None
    type: Tuple[Any, Any] = (str, ...)
    is_optional: bool = False
    is_secret: bool = False


def _raw(spec: EnvVarSpec) -> Optional[str]:
    value = os.environ.get(spec.id)
    if value is None or value == "":
        return spec.default
    return value


def parse(spec: EnvVarSpec) -> Any:
    raw = _raw(spec)
    if raw is None:
        return None
    if spec.parse is not None:
        return spec.parse(raw)
    return raw


def _describe(spec: EnvVarSpec, value: Any) -> str:
    if spec.is_secret and value:
        return "********"
    return repr(value)


def validate(specs: List[EnvVarSpec]) -> bool:
    """Parse every spec and type-check the values. Logs each problem found."""
    ok = True
    fields = {}
    values = {}
    for spec in specs:
        try:
            value = parse(spec)
        except Exception as e:
            logger.error(f"Env var {spec.id} could not be parsed: {e}")
            ok = False
            continue

        if value is None:
            if not spec.is_optional:
                logger.error(f"Env var {spec.id} is required but not set")
                ok = False
            continue

        fields[spec.id] = spec.type
        values[spec.id] = value
        logger.debug(f"Env var {spec.id} = {_describe(spec, value)}")

    if fields:
        model = create_model("EnvVars", **fields)
        try:
            model(**values)
        except ValidationError as e:
            for err in e.errors():
                logger.error(f"Env var {err['loc'][0]} is invalid: {err['msg']}")
            ok = False

    return ok
