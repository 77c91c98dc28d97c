from .capabilities import DEFAULT_CALLER, CallerFunctions
from .options import PRESETS, PolicyOptions
from .synthesizer import (
    IdentifierInvalid,
    check_identifier,
    compose,
    generate,
    preset_warnings,
    validate,
)

__all__ = [
    "CallerFunctions",
    "DEFAULT_CALLER",
    "IdentifierInvalid",
    "PRESETS",
    "PolicyOptions",
    "check_identifier",
    "compose",
    "generate",
    "preset_warnings",
    "validate",
]
