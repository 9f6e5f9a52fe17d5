"""Parameter-name hint engine.

Given a call site and a way to resolve its callee, decide which positional
arguments get a parameter-name hint. The flow for one call is:

  1. Early rejections: decorators, calls without arguments, a lone
     ``*items`` / ``**mapping`` argument, unresolved callees.
  2. Classification of the callee: plain function or method, class
     (own initializer, or data attributes as a fallback), variable bound to
     a lambda, or rejected.
  3. Effective parameters: receiver parameters removed, class attributes
     used when the callable itself has no parameters.
  4. Matching: parameters and arguments are walked in lock-step until the
     first keyword or unpacking argument.

Every rejection is an empty list. Nothing in this module raises to its
caller, logs or keeps state between calls.
"""
from __future__ import annotations
import abc
from typing import AbstractSet, List, Optional, Sequence

from pylsp_inlay_params.model import (
    Argument,
    ArgumentKind,
    AttributeTarget,
    CallSite,
    ClassAttribute,
    ConstructorTarget,
    Declaration,
    DeclarationKind,
    FeatureToggles,
    FunctionTarget,
    HintCandidate,
    Initializer,
    LambdaTarget,
    Parameter,
    Rejected,
    ResolvedTarget,
)

# Typeshed stubs for builtins and typing: hints there are pure noise
DEFAULT_FORBIDDEN_SOURCE_UNITS = frozenset(("builtins.pyi", "typing.pyi"))

DEFAULT_TOGGLES = FeatureToggles()

VARIADIC_PREFIX = "..."


class CalleeResolver(abc.ABC):
    """Name resolution capability the engine needs from its host."""

    @abc.abstractmethod
    def resolve_callee(self, call: CallSite) -> Optional[Declaration]:
        """Return the declaration the call targets, or None."""

    @abc.abstractmethod
    def find_bound_lambda(self, variable: Declaration) -> Optional[Declaration]:
        """Return the lambda assigned to *variable*, or None."""

    @abc.abstractmethod
    def find_initializer(self, cls: Declaration) -> Optional[Initializer]:
        """Return ``__init__`` (else ``__new__``) of *cls* or its bases."""

    @abc.abstractmethod
    def list_data_attributes(self, cls: Declaration) -> Sequence[ClassAttribute]:
        """Return the data attributes declared in the body of *cls*, in order."""


def is_forbidden(declaration: Declaration, forbidden_units: AbstractSet[str]) -> bool:
    return declaration.source_unit in forbidden_units


def extract_parameters(declaration: Optional[Declaration]) -> List[Parameter]:
    """Parameters of *declaration* without the implicit self/cls receiver."""
    if declaration is None or declaration.parameters is None:
        return []
    return [param for param in declaration.parameters if not param.is_receiver]


def classify(
    declaration: Declaration,
    toggles: FeatureToggles,
    resolver: CalleeResolver,
    forbidden_units: AbstractSet[str] = DEFAULT_FORBIDDEN_SOURCE_UNITS,
) -> ResolvedTarget:
    """Work out what kind of callable *declaration* is.

    The first matching rule wins; see the module docstring for the order.
    """
    if is_forbidden(declaration, forbidden_units):
        return Rejected("forbidden source unit")

    if declaration.kind is DeclarationKind.VARIABLE and toggles.lambda_hints:
        lambda_ = resolver.find_bound_lambda(declaration)
        if lambda_ is None:
            return Rejected("variable is not bound to a lambda")
        return LambdaTarget(lambda_)

    if declaration.kind is DeclarationKind.CLASS and toggles.class_hints:
        initializer = resolver.find_initializer(declaration)
        if initializer is not None and initializer.own:
            return ConstructorTarget(initializer.declaration)
        # No own __init__/__new__: dataclass-like, keep the inherited
        # initializer around in case the class declares no attributes
        attributes = tuple(resolver.list_data_attributes(declaration))
        fallback = initializer.declaration if initializer is not None else declaration
        return AttributeTarget(attributes, fallback)

    if declaration.kind is DeclarationKind.FUNCTION and toggles.function_hints:
        return FunctionTarget(declaration)

    return Rejected("hints disabled for %s" % declaration.kind.value)


def effective_parameters(target: ResolvedTarget) -> List[Parameter]:
    """Parameters hints are matched against, or [] to show no hints."""
    if isinstance(target, Rejected):
        return []

    if isinstance(target, AttributeTarget):
        if target.attributes:
            parameters = [attr.as_parameter() for attr in target.attributes]
        else:
            parameters = extract_parameters(target.fallback)
    elif isinstance(target, ConstructorTarget):
        parameters = extract_parameters(target.initializer)
    else:
        parameters = extract_parameters(target.declaration)

    if len(parameters) == 1 and not parameters[0].is_positional_collector:
        # A single ordinary argument speaks for itself; *args still helps
        return []
    return parameters


def is_hint_name_valid(name: str, argument: Argument) -> bool:
    """Whether *name* is worth showing next to *argument*."""
    if argument.identifier is not None and name.lower() == argument.identifier.lower():
        return False
    return not name.startswith("__") and len(name) > 1


def match_arguments(
    parameters: Sequence[Parameter], arguments: Sequence[Argument],
) -> List[HintCandidate]:
    """Pair parameters with positional arguments until keywords begin."""
    candidates: List[HintCandidate] = []
    for param, arg in zip(parameters, arguments):
        if param.name is None:
            continue
        if arg.kind is not ArgumentKind.POSITIONAL:
            # Once keyword or unpacking arguments start, positions are
            # no longer reliable
            return candidates
        if param.is_positional_collector:
            # One label covers every remaining positional argument
            candidates.append(HintCandidate(VARIADIC_PREFIX + param.name, arg.offset))
            return candidates
        if param.is_keyword_collector:
            return candidates
        if is_hint_name_valid(param.name, arg):
            candidates.append(HintCandidate(param.name, arg.offset))
    return candidates


def collect_parameter_hints(
    call: CallSite,
    resolver: CalleeResolver,
    toggles: FeatureToggles = DEFAULT_TOGGLES,
    forbidden_units: AbstractSet[str] = DEFAULT_FORBIDDEN_SOURCE_UNITS,
) -> List[HintCandidate]:
    """Hint candidates for one call site, in argument order."""
    if call.is_decorator or not call.arguments:
        return []
    if len(call.arguments) == 1 and call.arguments[0].is_unpacking:
        return []
    if call.callee is None:
        return []

    declaration = resolver.resolve_callee(call)
    if declaration is None or is_forbidden(declaration, forbidden_units):
        return []

    target = classify(declaration, toggles, resolver, forbidden_units)
    parameters = effective_parameters(target)
    if not parameters:
        return []
    return match_arguments(parameters, call.arguments)
