# ==== ICHIRAN COMMAND BUILDERS ==== #

"""
Argument vectors for the ``ichiran-cli`` engine modes.

The engine is invoked without a shell, so every argument is passed verbatim.
Expression evaluation (``-e``) is the one channel where caller text becomes
code. Text is therefore only ever embedded as an escaped Lisp string
literal, and romanization methods come from a closed enumeration.
"""

from enum import Enum
from typing import List, Sequence

from japanese_parser.errors import InvalidInputError


# ==== ENGINE FLAGS ==== #

INFO_FLAG = "-i"
FULL_FLAG = "-f"
LIMIT_FLAG = "-l"
EVALUATE_FLAG = "-e"
HELP_FLAG = "--help"


# ==== ROMANIZATION SCHEMES ==== #


class RomanizationScheme(Enum):
    """Supported romanization schemes and the engine method each one selects."""
    HEPBURN = "hepburn"
    KUNREI = "kunrei"
    PASSPORT = "passport"

    @property
    def method(self) -> str:
        return _SCHEME_METHODS[self]

    @classmethod
    def parse(cls, value: "str | RomanizationScheme") -> "RomanizationScheme":
        """Resolve a scheme name, rejecting anything outside the enumeration."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            supported = ", ".join(scheme.value for scheme in cls)
            raise InvalidInputError(
                f"Unsupported romanization scheme '{value}'. Supported: {supported}"
            ) from None


_SCHEME_METHODS = {
    RomanizationScheme.HEPBURN: "ichiran/romanize:*hepburn-traditional*",
    RomanizationScheme.KUNREI: "ichiran/romanize:*kunrei-siki*",
    RomanizationScheme.PASSPORT: "ichiran/romanize:*hepburn-passport*",
}


def lisp_string(text: str) -> str:
    """Encode ``text`` as a Lisp string literal.

    Only backslash and double quote are escaped; the reader takes every
    other character literally.
    """
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def romanize_expression(text: str, scheme: RomanizationScheme, include_info: bool = False) -> str:
    """Build the evaluation expression that romanizes ``text`` with ``scheme``."""
    expression = f"(ichiran:romanize {lisp_string(text)} :method {scheme.method}"
    if include_info:
        expression += " :with-info t"
    return expression + ")"


# ==== ARGUMENT VECTORS ==== #


def romanize_args(text: str, include_info: bool = False) -> List[str]:
    """Default mode: romanize with the engine's default scheme."""
    args = [INFO_FLAG] if include_info else []
    args.append(text)
    return args


def full_args(text: str, limit: int = 1) -> List[str]:
    """Full mode: structured segmentation output, optionally with alternatives."""
    args = [FULL_FLAG]
    if limit > 1:
        args.extend([LIMIT_FLAG, str(limit)])
    args.append(text)
    return args


def evaluate_args(
    text: str,
    scheme: "str | RomanizationScheme" = RomanizationScheme.HEPBURN,
    include_info: bool = False
) -> List[str]:
    """Evaluation mode: run the romanize expression for an explicit scheme."""
    return [EVALUATE_FLAG, romanize_expression(text, RomanizationScheme.parse(scheme), include_info)]


def help_args() -> List[str]:
    return [HELP_FLAG]


_FLAG_MODES = {
    INFO_FLAG: "info",
    FULL_FLAG: "full",
    EVALUATE_FLAG: "evaluate",
    HELP_FLAG: "help",
}


def mode_of(argv: Sequence[str]) -> str:
    """Name of the engine mode an argument vector selects, for metrics and spans."""
    if not argv:
        return "romanize"
    return _FLAG_MODES.get(argv[0], "romanize")
