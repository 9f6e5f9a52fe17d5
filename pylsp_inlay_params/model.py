"""Value types shared by the hint engine and the Jedi adapter.

Everything here is immutable and built fresh for a single call-site
evaluation.
"""
from __future__ import annotations
import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple, Union


class ArgumentKind(enum.Enum):
    POSITIONAL = "positional"
    KEYWORD = "keyword"
    STAR = "star"                # *items
    DOUBLE_STAR = "double_star"  # **mapping


class DeclarationKind(enum.Enum):
    FUNCTION = "function"
    CLASS = "class"
    VARIABLE = "variable"
    LAMBDA = "lambda"
    OTHER = "other"


@dataclass(frozen=True)
class Argument:
    """One argument of a call, in source order."""
    kind: ArgumentKind
    offset: int
    # Bare name, or the attribute of a dotted reference ("b" for "a.b")
    identifier: Optional[str] = None

    @property
    def is_unpacking(self) -> bool:
        return self.kind in (ArgumentKind.STAR, ArgumentKind.DOUBLE_STAR)


@dataclass(frozen=True)
class CallSite:
    arguments: Tuple[Argument, ...]
    # Opaque reference the resolver understands; None when the callee is
    # not a name (e.g. ``f()(x)`` or ``items[0](x)``)
    callee: Any = None
    is_decorator: bool = False


@dataclass(frozen=True)
class Parameter:
    name: Optional[str]
    is_receiver: bool = False
    is_positional_collector: bool = False
    is_keyword_collector: bool = False


@dataclass(frozen=True)
class ClassAttribute:
    name: str

    def as_parameter(self) -> Parameter:
        return Parameter(name=self.name)


@dataclass(frozen=True)
class Declaration:
    """A resolved declaration: function, class, variable or lambda.

    ``parameters`` is None when the declaration has no parameter list at
    all (classes, plain variables).
    """
    kind: DeclarationKind
    name: str
    source_unit: str = ""
    parameters: Optional[Tuple[Parameter, ...]] = None
    path: Optional[str] = None
    node: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Initializer:
    declaration: Declaration
    own: bool  # declared directly on the class, not inherited


@dataclass(frozen=True)
class HintCandidate:
    text: str
    offset: int


# ---------------------------------------------------------------------------
# Classification result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FunctionTarget:
    declaration: Declaration


@dataclass(frozen=True)
class ConstructorTarget:
    initializer: Declaration


@dataclass(frozen=True)
class AttributeTarget:
    attributes: Tuple[ClassAttribute, ...]
    # Inherited initializer, or the class itself when none was found
    fallback: Optional[Declaration] = None


@dataclass(frozen=True)
class LambdaTarget:
    declaration: Declaration


@dataclass(frozen=True)
class Rejected:
    reason: str


ResolvedTarget = Union[
    FunctionTarget, ConstructorTarget, AttributeTarget, LambdaTarget, Rejected,
]


# ---------------------------------------------------------------------------
# Feature toggles
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToggleSpec:
    id: str
    setting: str
    default: bool
    description: str


TOGGLE_SPECS: Tuple[ToggleSpec, ...] = (
    ToggleSpec(
        "class-constructor-hints", "class_hints", True,
        "Show parameter names for class constructors and dataclasses.",
    ),
    ToggleSpec(
        "function-call-hints", "function_hints", True,
        "Show parameter names for function and method calls.",
    ),
    ToggleSpec(
        "lambda-call-hints", "lambda_hints", True,
        "Show parameter names for lambda calls.",
    ),
)


@dataclass(frozen=True)
class FeatureToggles:
    class_hints: bool = True
    function_hints: bool = True
    lambda_hints: bool = True

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "FeatureToggles":
        """Snapshot the toggles from a pylsp plugin settings dict."""
        return cls(**{
            spec.setting: bool(settings.get(spec.setting, spec.default))
            for spec in TOGGLE_SPECS
        })
