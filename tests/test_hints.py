"""Tests for the parameter-name hint engine, using a fake resolver."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Make sure the package is importable from the repo root
sys.path.insert(0, str(Path(__file__).parent.parent))

from pylsp_inlay_params.hints import (
    CalleeResolver,
    classify,
    collect_parameter_hints,
    effective_parameters,
    extract_parameters,
    is_hint_name_valid,
    match_arguments,
)
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
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeResolver(CalleeResolver):
    def __init__(self, declaration=None, lambda_=None, initializer=None, attributes=()):
        self.declaration = declaration
        self.lambda_ = lambda_
        self.initializer = initializer
        self.attributes = [ClassAttribute(name) for name in attributes]

    def resolve_callee(self, call):
        return self.declaration

    def find_bound_lambda(self, variable):
        return self.lambda_

    def find_initializer(self, cls):
        return self.initializer

    def list_data_attributes(self, cls):
        return self.attributes


def _params(*names):
    """Parameters from names; "*x" / "**x" mark collectors, "self" a receiver."""
    result = []
    for name in names:
        if name.startswith("**"):
            result.append(Parameter(name[2:], is_keyword_collector=True))
        elif name.startswith("*"):
            result.append(Parameter(name[1:], is_positional_collector=True))
        else:
            result.append(Parameter(name, is_receiver=name in ("self", "cls")))
    return tuple(result)


def _function(*names, unit="app.py", kind=DeclarationKind.FUNCTION):
    return Declaration(kind=kind, name="f", source_unit=unit, parameters=_params(*names))


def _class(unit="app.py"):
    return Declaration(kind=DeclarationKind.CLASS, name="Cls", source_unit=unit)


def _pos(offset, identifier=None):
    return Argument(ArgumentKind.POSITIONAL, offset, identifier)


def _kw(offset):
    return Argument(ArgumentKind.KEYWORD, offset)


def _star(offset):
    return Argument(ArgumentKind.STAR, offset)


def _call(*arguments, is_decorator=False):
    return CallSite(arguments=tuple(arguments), callee="f", is_decorator=is_decorator)


def _texts(candidates):
    return [(c.text, c.offset) for c in candidates]


# ---------------------------------------------------------------------------
# extract_parameters
# ---------------------------------------------------------------------------

class TestExtractParameters:
    def test_drops_receiver(self):
        params = extract_parameters(_function("self", "host", "port"))
        assert [p.name for p in params] == ["host", "port"]

    def test_no_parameter_list_is_empty(self):
        assert extract_parameters(_class()) == []

    def test_none_is_empty(self):
        assert extract_parameters(None) == []

    def test_keeps_order_and_flags(self):
        params = extract_parameters(_function("a", "*rest", "**options"))
        assert params[1].is_positional_collector
        assert params[2].is_keyword_collector


# ---------------------------------------------------------------------------
# is_hint_name_valid
# ---------------------------------------------------------------------------

class TestHintNameValid:
    def test_same_name_case_insensitive(self):
        assert not is_hint_name_valid("timeout", _pos(0, "Timeout"))

    def test_different_name(self):
        assert is_hint_name_valid("timeout", _pos(0, "delay"))

    def test_no_identifier(self):
        assert is_hint_name_valid("timeout", _pos(0))

    def test_dunder_prefix(self):
        assert not is_hint_name_valid("__value", _pos(0))

    def test_single_character(self):
        assert not is_hint_name_valid("x", _pos(0))

    def test_two_characters_allowed(self):
        assert is_hint_name_valid("id", _pos(0))


# ---------------------------------------------------------------------------
# match_arguments
# ---------------------------------------------------------------------------

class TestMatchArguments:
    def test_pairs_positionally(self):
        result = match_arguments(_params("host", "port"), [_pos(1), _pos(5)])
        assert _texts(result) == [("host", 1), ("port", 5)]

    def test_stops_at_keyword(self):
        result = match_arguments(_params("aa", "bb", "cc"), [_pos(1), _kw(5), _pos(9)])
        assert _texts(result) == [("aa", 1)]

    def test_stops_at_unpacking(self):
        result = match_arguments(_params("aa", "bb", "cc"), [_pos(1), _star(5), _pos(9)])
        assert _texts(result) == [("aa", 1)]

    def test_positional_collector_labels_rest(self):
        result = match_arguments(_params("aa", "*rest"), [_pos(1), _pos(5), _pos(9)])
        assert _texts(result) == [("aa", 1), ("...rest", 5)]

    def test_keyword_collector_stops_silently(self):
        result = match_arguments(_params("aa", "**options"), [_pos(1), _pos(5)])
        assert _texts(result) == [("aa", 1)]

    def test_anonymous_parameter_skipped(self):
        params = (Parameter("aa"), Parameter(None), Parameter("cc"))
        result = match_arguments(params, [_pos(1), _pos(5), _pos(9)])
        assert _texts(result) == [("aa", 1), ("cc", 9)]

    def test_invalid_name_skipped_and_matching_continues(self):
        result = match_arguments(
            _params("timeout", "retries"), [_pos(1, "TIMEOUT"), _pos(5)],
        )
        assert _texts(result) == [("retries", 5)]

    def test_extra_arguments_ignored(self):
        result = match_arguments(_params("aa", "bb"), [_pos(1), _pos(5), _pos(9)])
        assert len(result) == 2

    def test_extra_parameters_ignored(self):
        result = match_arguments(_params("aa", "bb", "cc"), [_pos(1)])
        assert _texts(result) == [("aa", 1)]


# ---------------------------------------------------------------------------
# classify
# ---------------------------------------------------------------------------

class TestClassify:
    def test_function(self):
        decl = _function("aa", "bb")
        target = classify(decl, FeatureToggles(), FakeResolver())
        assert target == FunctionTarget(decl)

    def test_forbidden_unit(self):
        target = classify(_function("aa", "bb", unit="builtins.pyi"), FeatureToggles(), FakeResolver())
        assert isinstance(target, Rejected)

    def test_custom_forbidden_units(self):
        decl = _function("aa", "bb", unit="vendor.py")
        target = classify(decl, FeatureToggles(), FakeResolver(), frozenset(["vendor.py"]))
        assert isinstance(target, Rejected)

    def test_function_hints_disabled(self):
        target = classify(_function("aa", "bb"), FeatureToggles(function_hints=False), FakeResolver())
        assert isinstance(target, Rejected)

    def test_variable_bound_to_lambda(self):
        lambda_ = _function("aa", "bb", kind=DeclarationKind.LAMBDA)
        variable = Declaration(DeclarationKind.VARIABLE, "scale", "app.py")
        target = classify(variable, FeatureToggles(), FakeResolver(lambda_=lambda_))
        assert target == LambdaTarget(lambda_)

    def test_variable_without_lambda(self):
        variable = Declaration(DeclarationKind.VARIABLE, "scale", "app.py")
        target = classify(variable, FeatureToggles(), FakeResolver())
        assert isinstance(target, Rejected)

    def test_variable_with_lambda_hints_disabled(self):
        lambda_ = _function("aa", "bb", kind=DeclarationKind.LAMBDA)
        variable = Declaration(DeclarationKind.VARIABLE, "scale", "app.py")
        target = classify(variable, FeatureToggles(lambda_hints=False), FakeResolver(lambda_=lambda_))
        assert isinstance(target, Rejected)

    def test_class_with_own_initializer(self):
        init = _function("self", "host", "port")
        resolver = FakeResolver(initializer=Initializer(init, own=True))
        target = classify(_class(), FeatureToggles(), resolver)
        assert target == ConstructorTarget(init)

    def test_class_with_inherited_initializer(self):
        init = _function("self", "host", "port")
        resolver = FakeResolver(initializer=Initializer(init, own=False), attributes=["xx"])
        target = classify(_class(), FeatureToggles(), resolver)
        assert target == AttributeTarget((ClassAttribute("xx"),), init)

    def test_class_without_initializer_falls_back_to_class(self):
        cls = _class()
        target = classify(cls, FeatureToggles(), FakeResolver(attributes=["xx", "yy"]))
        assert isinstance(target, AttributeTarget)
        assert target.fallback is cls
        assert [a.name for a in target.attributes] == ["xx", "yy"]

    def test_class_hints_disabled(self):
        target = classify(_class(), FeatureToggles(class_hints=False), FakeResolver(attributes=["xx", "yy"]))
        assert isinstance(target, Rejected)

    def test_other_declaration_rejected(self):
        decl = Declaration(DeclarationKind.OTHER, "cb", "app.py")
        assert isinstance(classify(decl, FeatureToggles(), FakeResolver()), Rejected)


# ---------------------------------------------------------------------------
# effective_parameters
# ---------------------------------------------------------------------------

class TestEffectiveParameters:
    def test_rejected(self):
        assert effective_parameters(Rejected("nope")) == []

    def test_single_parameter_suppressed(self):
        assert effective_parameters(FunctionTarget(_function("only"))) == []

    def test_single_parameter_after_receiver_suppressed(self):
        assert effective_parameters(FunctionTarget(_function("self", "only"))) == []

    def test_single_positional_collector_kept(self):
        params = effective_parameters(FunctionTarget(_function("*only")))
        assert [p.name for p in params] == ["only"]

    def test_single_keyword_collector_suppressed(self):
        assert effective_parameters(FunctionTarget(_function("**only"))) == []

    def test_attributes_take_priority_over_inherited_initializer(self):
        target = AttributeTarget(
            (ClassAttribute("xx"), ClassAttribute("yy")), _function("self", "aa", "bb"),
        )
        assert [p.name for p in effective_parameters(target)] == ["xx", "yy"]

    def test_no_attributes_uses_inherited_initializer(self):
        target = AttributeTarget((), _function("self", "aa", "bb"))
        assert [p.name for p in effective_parameters(target)] == ["aa", "bb"]

    def test_no_attributes_no_parameters(self):
        assert effective_parameters(AttributeTarget((), _class())) == []

    def test_attributes_have_no_collector_flags(self):
        target = AttributeTarget((ClassAttribute("args"), ClassAttribute("kwargs")), None)
        params = effective_parameters(target)
        assert not any(p.is_positional_collector or p.is_keyword_collector for p in params)


# ---------------------------------------------------------------------------
# collect_parameter_hints
# ---------------------------------------------------------------------------

class TestCollectParameterHints:
    def _run(self, call, resolver, **toggles):
        return _texts(collect_parameter_hints(call, resolver, FeatureToggles(**toggles)))

    def test_function_call(self):
        resolver = FakeResolver(_function("host", "port"))
        assert self._run(_call(_pos(4), _pos(10)), resolver) == [("host", 4), ("port", 10)]

    def test_zero_arguments(self):
        resolver = FakeResolver(_function("host", "port"))
        assert self._run(_call(), resolver) == []

    def test_sole_star_argument(self):
        resolver = FakeResolver(_function("*items"))
        assert self._run(_call(_star(2)), resolver) == []

    def test_sole_double_star_argument(self):
        resolver = FakeResolver(_function("aa", "bb"))
        call = _call(Argument(ArgumentKind.DOUBLE_STAR, 2))
        assert self._run(call, resolver) == []

    def test_decorator(self):
        resolver = FakeResolver(_function("host", "port"))
        assert self._run(_call(_pos(4), _pos(10), is_decorator=True), resolver) == []

    def test_unresolved(self):
        assert self._run(_call(_pos(4), _pos(10)), FakeResolver()) == []

    def test_missing_callee_reference(self):
        call = CallSite(arguments=(_pos(4), _pos(10)), callee=None)
        assert self._run(call, FakeResolver(_function("host", "port"))) == []

    def test_forbidden_unit(self):
        resolver = FakeResolver(_function("values", "sep", unit="builtins.pyi"))
        assert self._run(_call(_pos(4), _pos(10)), resolver) == []

    def test_single_parameter(self):
        resolver = FakeResolver(_function("only"))
        assert self._run(_call(_pos(4)), resolver) == []

    def test_single_collector_parameter(self):
        resolver = FakeResolver(_function("*only"))
        assert self._run(_call(_pos(4)), resolver) == [("...only", 4)]

    def test_constructor_fallback_to_attributes(self):
        resolver = FakeResolver(_class(), attributes=["xx", "yy"])
        assert self._run(_call(_pos(4), _pos(7)), resolver) == [("xx", 4), ("yy", 7)]

    def test_constructor_with_own_initializer(self):
        init = _function("self", "host", "port")
        resolver = FakeResolver(_class(), initializer=Initializer(init, own=True))
        assert self._run(_call(_pos(4), _pos(7)), resolver) == [("host", 4), ("port", 7)]

    def test_lambda_call(self):
        lambda_ = _function("value", "factor", kind=DeclarationKind.LAMBDA)
        variable = Declaration(DeclarationKind.VARIABLE, "scale", "app.py")
        resolver = FakeResolver(variable, lambda_=lambda_)
        assert self._run(_call(_pos(6), _pos(9)), resolver) == [("value", 6), ("factor", 9)]

    def test_keyword_truncation(self):
        resolver = FakeResolver(_function("aa", "bb", "cc"))
        assert self._run(_call(_pos(2), _kw(6), _pos(12)), resolver) == [("aa", 2)]

    @pytest.mark.parametrize("toggle", ["class_hints", "lambda_hints"])
    def test_other_toggles_do_not_affect_functions(self, toggle):
        resolver = FakeResolver(_function("host", "port"))
        assert self._run(_call(_pos(4), _pos(10)), resolver, **{toggle: False}) == [
            ("host", 4), ("port", 10),
        ]

    def test_function_toggle_leaves_classes_and_lambdas(self):
        lambda_ = _function("value", "factor", kind=DeclarationKind.LAMBDA)
        variable = Declaration(DeclarationKind.VARIABLE, "scale", "app.py")
        lambda_resolver = FakeResolver(variable, lambda_=lambda_)
        class_resolver = FakeResolver(_class(), attributes=["xx", "yy"])
        function_resolver = FakeResolver(_function("host", "port"))
        call = _call(_pos(4), _pos(10))

        assert self._run(call, function_resolver, function_hints=False) == []
        assert self._run(call, lambda_resolver, function_hints=False) == [("value", 4), ("factor", 10)]
        assert self._run(call, class_resolver, function_hints=False) == [("xx", 4), ("yy", 10)]

    def test_deterministic(self):
        resolver = FakeResolver(_function("host", "*rest"))
        call = _call(_pos(1), _pos(5), _pos(9))
        first = collect_parameter_hints(call, resolver)
        assert first == collect_parameter_hints(call, resolver)
        assert first == [HintCandidate("host", 1), HintCandidate("...rest", 5)]
