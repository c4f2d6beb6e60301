"""Version-gated .pyi interface generator for installed Python packages.

Imports a package, builds a closed type model of every documentable construct
and renders it to a canonical `<package>@<version>.pyi` file whose syntax
follows the capabilities of the installed type checker version.

Usage:
    python stubsmith.py foo --checker-version 0.5.10820
    python stubsmith.py foo bar --checker-dist pyright --output-dir typings/packages
"""

import __future__
import argparse
import collections.abc
import importlib
import importlib.metadata
import inspect
import re
import sys
import tomllib
import types
import typing
import weakref
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property, total_ordering
from pathlib import Path

DEFAULT_OUTPUT_DIR = Path("typings") / "packages"
DEFAULT_STRICTNESS = "pyright: basic"
DEFAULT_REGEN_COMMAND = "stubsmith"
DO_NOT_EDIT_BANNER = "DO NOT EDIT MANUALLY"


# ===--- CLI config contracts ---=== #


VALID_ERROR_CODES = {
    "UNSUPPORTED_VERSION",
    "MISSING_CHECKER_VERSION",
    "CHECKER_NOT_FOUND",
    "INVALID_CAPABILITIES_FILE",
    "INVALID_PACKAGE_NAME",
    "MISSING_PACKAGE",
    "CONFLICT_LIST_WITH_PACKAGES",
    "PATH_NOT_FOUND",
}
_PACKAGE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


class UnsupportedVersionError(ConfigError):
    """A checker version string that cannot be parsed into a comparable value."""

    def __init__(self, value: object):
        super().__init__(
            "UNSUPPORTED_VERSION",
            f"Unsupported checker version: {value!r}",
            "Use dotted integer segments with an optional a/b/rc suffix, "
            "for example 0.5.10820 or 1.2.0rc1.",
        )
        self.value = value


class AssemblyError(RuntimeError):
    """An internal invariant was violated while assembling an interface file.

    Raised for malformed type nodes (a Generic without arguments, a Union
    without members). Never degraded to Any: it aborts the package.
    """


class PackageLoadError(Exception):
    def __init__(self, package: str, reason: str):
        super().__init__(f"Cannot load package {package!r}: {reason}")
        self.package = package
        self.reason = reason


class ExtractionAmbiguous(Exception):
    """Raised by type extraction when a runtime value has no nameable type.

    Always caught inside the walker and replaced with UNKNOWN.
    """


# ===--- Checker versions ---=== #


_VERSION_RE = re.compile(r"^v?(\d+(?:\.\d+)*)(?:[-.]?(a|b|rc)(\d*))?$")
_PRE_RELEASE_RANK = {"a": 0, "b": 1, "rc": 2}
_FINAL_RANK = 3


@total_ordering
@dataclass(frozen=True, eq=False)
class CheckerVersion:
    """Totally ordered version of the downstream type checker.

    Release segments compare numerically and trailing zero segments are
    insignificant, so "0.5" == "0.5.0" and "0.5.10587" < "0.5.10588". A
    pre-release ("a", "b", "rc") sorts before the final release of the same
    segments.
    """

    release: tuple[int, ...]
    pre: tuple[str, int] | None = None

    def _key(self) -> tuple[tuple[int, ...], int, int]:
        release = list(self.release)
        while len(release) > 1 and release[-1] == 0:
            release.pop()
        if self.pre is None:
            return tuple(release), _FINAL_RANK, 0
        tag, number = self.pre
        return tuple(release), _PRE_RELEASE_RANK[tag], number

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CheckerVersion):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: "CheckerVersion") -> bool:
        if not isinstance(other, CheckerVersion):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        text = ".".join(str(segment) for segment in self.release)
        if self.pre is not None:
            text += f"{self.pre[0]}{self.pre[1]}"
        return text


def parse_version(raw: "str | CheckerVersion") -> CheckerVersion:
    if isinstance(raw, CheckerVersion):
        return raw
    if not isinstance(raw, str):
        raise UnsupportedVersionError(raw)
    match = _VERSION_RE.match(raw.strip())
    if match is None:
        raise UnsupportedVersionError(raw)
    release_text, pre_tag, pre_number = match.groups()
    release = tuple(int(segment) for segment in release_text.split("."))
    pre = (pre_tag, int(pre_number or "0")) if pre_tag else None
    return CheckerVersion(release, pre)


# ===--- Capability registry ---=== #


class Capability(Enum):
    """Serialization features that appear at a given checker version."""

    GENERIC_WEAK_COLLECTIONS = "generic_weak_collections"
    CLASS_TYPE_IN_UNION = "class_type_in_union"
    QUALIFIED_CLASS_NAME_IN_UNION = "qualified_class_name_in_union"


@dataclass(frozen=True)
class CapabilityRule:
    capability: Capability
    introduced_at: CheckerVersion
    revoked_at: CheckerVersion | None = None

    def applies_to(self, version: CheckerVersion) -> bool:
        if version < self.introduced_at:
            return False
        return self.revoked_at is None or version < self.revoked_at


@dataclass(frozen=True)
class CapabilityRegistry:
    """Immutable set of capability rules, each checked independently.

    Safe to share between threads; never mutated after construction.
    """

    rules: tuple[CapabilityRule, ...]

    def capabilities_for(self, version: CheckerVersion) -> frozenset[Capability]:
        return frozenset(
            rule.capability for rule in self.rules if rule.applies_to(version)
        )

    def with_rules(self, overrides: tuple[CapabilityRule, ...]) -> "CapabilityRegistry":
        """Return a registry where overrides replace rules of the same capability."""
        replaced = {rule.capability for rule in overrides}
        kept = tuple(rule for rule in self.rules if rule.capability not in replaced)
        return CapabilityRegistry(kept + overrides)


DEFAULT_CAPABILITY_RULES: tuple[CapabilityRule, ...] = (
    CapabilityRule(Capability.GENERIC_WEAK_COLLECTIONS, parse_version("0.5.10587")),
    CapabilityRule(Capability.CLASS_TYPE_IN_UNION, parse_version("0.5.10782")),
    CapabilityRule(
        Capability.QUALIFIED_CLASS_NAME_IN_UNION, parse_version("0.5.10820")
    ),
)
DEFAULT_REGISTRY = CapabilityRegistry(DEFAULT_CAPABILITY_RULES)


def capabilities_for(
    version: "str | CheckerVersion", registry: CapabilityRegistry = DEFAULT_REGISTRY
) -> frozenset[Capability]:
    return registry.capabilities_for(parse_version(version))


def parse_capability_table(table: object) -> tuple[CapabilityRule, ...]:
    """Build capability rules from a decoded `[capabilities]` TOML table.

    Each key is a Capability value. A value is either a version string (the
    introduction version) or a table with `introduced` and optional `revoked`.

    Raises:
        ConfigError: INVALID_CAPABILITIES_FILE for unknown capabilities or
            malformed entries.
        UnsupportedVersionError: A version string does not parse.
    """
    if not isinstance(table, dict):
        raise ConfigError(
            "INVALID_CAPABILITIES_FILE",
            "The [capabilities] section must be a table.",
            'Example: generic_weak_collections = "0.5.10587"',
        )

    known = {capability.value: capability for capability in Capability}
    rules: list[CapabilityRule] = []
    for key, entry in table.items():
        capability = known.get(key)
        if capability is None:
            raise ConfigError(
                "INVALID_CAPABILITIES_FILE",
                f"Unknown capability: {key}",
                f"Use one of: {', '.join(sorted(known))}.",
            )
        if isinstance(entry, str):
            rules.append(CapabilityRule(capability, parse_version(entry)))
            continue
        if isinstance(entry, dict) and isinstance(entry.get("introduced"), str):
            revoked = entry.get("revoked")
            if revoked is not None and not isinstance(revoked, str):
                raise ConfigError(
                    "INVALID_CAPABILITIES_FILE",
                    f"Capability {key} has a non-string 'revoked' value.",
                )
            rules.append(
                CapabilityRule(
                    capability,
                    parse_version(entry["introduced"]),
                    parse_version(revoked) if revoked is not None else None,
                )
            )
            continue
        raise ConfigError(
            "INVALID_CAPABILITIES_FILE",
            f"Invalid entry for capability {key}: {entry!r}",
            'Use a version string or { introduced = "...", revoked = "..." }.',
        )
    return tuple(rules)


def load_capability_registry(
    path: Path, base: CapabilityRegistry = DEFAULT_REGISTRY
) -> CapabilityRegistry:
    try:
        data = tomllib.loads(Path(path).read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as err:
        raise ConfigError(
            "INVALID_CAPABILITIES_FILE",
            f"Cannot parse capabilities file {path}: {err}",
        ) from err
    return base.with_rules(parse_capability_table(data.get("capabilities", {})))


# ===--- Type model ---=== #


class TypeNode:
    """Base of the closed set of type shapes the serializer understands."""

    __slots__ = ()


@dataclass(frozen=True)
class Simple(TypeNode):
    name: str


@dataclass(frozen=True)
class Generic(TypeNode):
    base_name: str
    type_arguments: tuple[TypeNode, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "type_arguments", tuple(self.type_arguments))


@dataclass(frozen=True)
class ClassType(TypeNode):
    referenced_name: str


@dataclass(frozen=True, eq=False)
class Union(TypeNode):
    """Union of member types. Member order is kept for output only."""

    members: tuple[TypeNode, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "members", tuple(self.members))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Union):
            return NotImplemented
        return frozenset(self.members) == frozenset(other.members)

    def __hash__(self) -> int:
        return hash(frozenset(self.members))


@dataclass(frozen=True)
class Unknown(TypeNode):
    pass


@dataclass(frozen=True)
class Anything(TypeNode):
    pass


@dataclass(frozen=True)
class Alias(TypeNode):
    body: TypeNode


UNKNOWN = Unknown()
ANYTHING = Anything()
NONE = Simple("None")


def equals(a: TypeNode, b: TypeNode) -> bool:
    return a == b


def normalize(node: TypeNode) -> TypeNode:
    """Flatten nested unions, drop duplicate members and collapse 1-member unions."""
    if isinstance(node, Union):
        members: list[TypeNode] = []
        for member in node.members:
            member = normalize(member)
            flat = member.members if isinstance(member, Union) else (member,)
            for item in flat:
                if item not in members:
                    members.append(item)
        if len(members) == 1:
            return members[0]
        return Union(tuple(members))
    if isinstance(node, Generic):
        return Generic(
            node.base_name, tuple(normalize(arg) for arg in node.type_arguments)
        )
    if isinstance(node, Alias):
        return Alias(normalize(node.body))
    return node


# ===--- Documentable constructs ---=== #


class ConstructKind(Enum):
    CONSTANT = "constant"
    CLASS = "class"
    MODULE = "module"
    METHOD = "method"


@dataclass(frozen=True)
class TypeParameter:
    """A declared type parameter of a generic class or function.

    Attributes:
        name: Parameter name as declared, e.g. "Elem".
        kind: "TypeVar", "ParamSpec" or "TypeVarTuple".
        bound: Upper bound, if any.
        constraints: Value restriction, empty when unconstrained.
        covariant: Declared covariant.
        contravariant: Declared contravariant.
    """

    name: str
    kind: str = "TypeVar"
    bound: TypeNode | None = None
    constraints: tuple[TypeNode, ...] = ()
    covariant: bool = False
    contravariant: bool = False


@dataclass(frozen=True)
class Parameter:
    """One callable parameter.

    `kind` is the lower-cased inspect kind name ("positional_only",
    "positional_or_keyword", "var_positional", "keyword_only",
    "var_keyword"). `annotation` is None only for an unannotated implicit
    receiver (self/cls).
    """

    name: str
    kind: str = "positional_or_keyword"
    annotation: TypeNode | None = UNKNOWN
    has_default: bool = False


@dataclass(frozen=True)
class MethodSignature:
    parameters: tuple[Parameter, ...]
    return_type: TypeNode
    decorator: str | None = None
    is_async: bool = False


@dataclass(frozen=True)
class DocumentableConstruct:
    """One discovered construct, immutable once produced by the walker.

    Attributes:
        qualified_name: Dotted path, e.g. "foo.GenericType.foo".
        kind: Classification made once during the walk.
        type: Constant type, alias, or UNKNOWN when undeterminable.
        generic_parameters: Type parameters declared by a generic class, or
            function-level type variables not already in scope.
        method_signature: Signature for METHOD constructs.
        bases: Rendered base classes for CLASS constructs.
        members: Nested constructs of a CLASS or MODULE, in discovery order.
    """

    qualified_name: str
    kind: ConstructKind
    type: TypeNode = UNKNOWN
    generic_parameters: tuple[TypeParameter, ...] = ()
    method_signature: MethodSignature | None = None
    bases: tuple[TypeNode, ...] = ()
    members: tuple["DocumentableConstruct", ...] = ()

    @property
    def name(self) -> str:
        return self.qualified_name.rpartition(".")[2]


# ===--- Symbol walker ---=== #


WEAK_COLLECTION_TEMPLATES: dict[type, tuple[str, int]] = {
    weakref.WeakKeyDictionary: ("weakref.WeakKeyDictionary", 2),
    weakref.WeakValueDictionary: ("weakref.WeakValueDictionary", 2),
    weakref.WeakSet: ("weakref.WeakSet", 1),
}
"""Weak-reference collection classes mapped to (public name, type arity).

The public name is used instead of `__module__` because WeakSet lives in the
private `_weakrefset` module."""

BUILTIN_CONTAINER_ARITY: dict[type, int] = {
    list: 1,
    set: 1,
    frozenset: 1,
    dict: 2,
}

DOCUMENTED_DUNDERS = frozenset(
    {
        "__init__",
        "__call__",
        "__enter__",
        "__exit__",
        "__iter__",
        "__next__",
        "__len__",
        "__contains__",
        "__getitem__",
        "__setitem__",
    }
)

_TYPE_PARAMETER_TYPES = (typing.TypeVar, typing.ParamSpec, typing.TypeVarTuple)
_UNION_ORIGINS = (typing.Union, types.UnionType)
_TYPE_ALIAS_TYPE = getattr(typing, "TypeAliasType", None)
_UNPACK = getattr(typing, "Unpack", None)
_FUTURE_FEATURE = type(__future__.annotations)
_SLOT_DESCRIPTOR_TYPES = (types.MemberDescriptorType, types.GetSetDescriptorType)
_EMPTY = inspect.Parameter.empty
_FORWARD_NAME_RE = re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*)*$")


def qualified_name(obj: object) -> str:
    if isinstance(obj, type) and obj in WEAK_COLLECTION_TEMPLATES:
        return WEAK_COLLECTION_TEMPLATES[obj][0]
    module = getattr(obj, "__module__", None)
    qualname = getattr(obj, "__qualname__", None) or getattr(obj, "__name__", None)
    if not isinstance(module, str) or not isinstance(qualname, str):
        raise ExtractionAmbiguous(f"Cannot name {obj!r}")
    if "<locals>" in qualname:
        raise ExtractionAmbiguous(f"{qualname} is local to a function")
    return f"{module}.{qualname}"


def _literal_node(value: object) -> TypeNode:
    if isinstance(value, Enum):
        return Simple(f"{qualified_name(type(value))}.{value.name}")
    return Simple(repr(value))


def annotation_to_node(annotation: object) -> TypeNode:
    """Convert a runtime annotation object to a TypeNode.

    Raises:
        ExtractionAmbiguous: The annotation has no representable shape.
    """
    if annotation is typing.Any:
        return UNKNOWN
    if annotation is object:
        return ANYTHING
    if annotation is None or annotation is type(None):
        return NONE
    if annotation is Ellipsis:
        return Simple("...")
    if isinstance(annotation, typing.ForwardRef):
        annotation = annotation.__forward_arg__
    if isinstance(annotation, str):
        # unevaluated expressions are kept only when they are plain names
        if not _FORWARD_NAME_RE.match(annotation):
            raise ExtractionAmbiguous(f"Unresolved annotation: {annotation!r}")
        return Simple(annotation)
    if isinstance(annotation, _TYPE_PARAMETER_TYPES):
        return Simple(annotation.__name__)
    if isinstance(annotation, typing.ParamSpecArgs):
        return Simple(f"{annotation.__origin__.__name__}.args")
    if isinstance(annotation, typing.ParamSpecKwargs):
        return Simple(f"{annotation.__origin__.__name__}.kwargs")
    if _TYPE_ALIAS_TYPE is not None and isinstance(annotation, _TYPE_ALIAS_TYPE):
        return Simple(f"{annotation.__module__}.{annotation.__name__}")

    origin = typing.get_origin(annotation)
    args = typing.get_args(annotation)
    if origin in _UNION_ORIGINS:
        return Union(tuple(annotation_to_node(arg) for arg in args))
    if origin is typing.Annotated:
        return annotation_to_node(args[0])
    if origin is typing.Literal:
        return Generic("typing.Literal", tuple(_literal_node(arg) for arg in args))
    if _UNPACK is not None and origin is _UNPACK:
        return Simple(f"*{annotation_to_node(args[0]).name}")
    if origin is type:
        if not args:
            return Simple("builtins.type")
        target = args[0]
        if isinstance(target, type) and target is not typing.Any:
            return ClassType(qualified_name(target))
        return Generic("builtins.type", (annotation_to_node(target),))
    if origin is collections.abc.Callable:
        returns = annotation_to_node(args[-1]) if args else UNKNOWN
        return Generic("collections.abc.Callable", (Simple("..."), returns))
    if origin is not None:
        if not args:
            return Simple(qualified_name(origin))
        return Generic(
            qualified_name(origin), tuple(annotation_to_node(arg) for arg in args)
        )
    if isinstance(annotation, type):
        return Simple(qualified_name(annotation))
    raise ExtractionAmbiguous(f"Unsupported annotation: {annotation!r}")


def _type_or_unknown(annotation: object) -> TypeNode:
    try:
        return annotation_to_node(annotation)
    except ExtractionAmbiguous:
        return UNKNOWN


def value_type_node(value: object) -> TypeNode:
    """Return the fullest type of a runtime value.

    Weak-reference collections are always generic here; whether their
    arguments survive is decided at render time.

    Raises:
        ExtractionAmbiguous: The value's class cannot be named.
    """
    value_type = type(value)
    template = WEAK_COLLECTION_TEMPLATES.get(value_type)
    if template is not None:
        name, arity = template
        return Generic(name, (UNKNOWN,) * arity)
    if value is None:
        return NONE
    if value_type in BUILTIN_CONTAINER_ARITY:
        arity = BUILTIN_CONTAINER_ARITY[value_type]
        return Generic(qualified_name(value_type), (UNKNOWN,) * arity)
    if value_type is tuple:
        return Generic("builtins.tuple", (UNKNOWN, Simple("...")))
    orig_class = getattr(value, "__orig_class__", None)
    if orig_class is not None:
        return annotation_to_node(orig_class)
    parameters = getattr(value_type, "__parameters__", ())
    if isinstance(parameters, tuple) and parameters:
        return Generic(qualified_name(value_type), (UNKNOWN,) * len(parameters))
    return Simple(qualified_name(value_type))


def type_parameter_from(variable: object) -> TypeParameter:
    bound = getattr(variable, "__bound__", None)
    constraints = getattr(variable, "__constraints__", ())
    return TypeParameter(
        name=variable.__name__,
        kind=type(variable).__name__,
        bound=_type_or_unknown(bound) if bound is not None else None,
        constraints=tuple(_type_or_unknown(c) for c in constraints),
        covariant=bool(getattr(variable, "__covariant__", False)),
        contravariant=bool(getattr(variable, "__contravariant__", False)),
    )


def _own_annotations(obj: object) -> dict[str, object]:
    # evaluating string annotations runs arbitrary package code
    try:
        return dict(inspect.get_annotations(obj, eval_str=True))
    except Exception:
        pass
    try:
        return dict(inspect.get_annotations(obj))
    except Exception:
        return {}


def _is_type_alias_annotation(annotation: object) -> bool:
    if annotation is typing.TypeAlias:
        return True
    if isinstance(annotation, str):
        return annotation.rpartition(".")[2] == "TypeAlias"
    return getattr(annotation, "_name", None) == "TypeAlias"


def _is_type_alias_value(value: object) -> bool:
    if _TYPE_ALIAS_TYPE is not None and isinstance(value, _TYPE_ALIAS_TYPE):
        return True
    return not isinstance(value, type) and typing.get_origin(value) is not None


def _within_package(module_name: object, root: str) -> bool:
    return isinstance(module_name, str) and (
        module_name == root or module_name.startswith(root + ".")
    )


def _defined_here(defining_module: object, module_name: str, root: str) -> bool:
    """True when an object belongs in the section of `module_name`.

    Objects defined in private modules of the package are documented where
    they are re-exported.
    """
    if defining_module == module_name:
        return True
    if not _within_package(defining_module, root):
        return False
    return any(part.startswith("_") for part in defining_module.split("."))


def _is_reexported_form(name: str, value: object) -> bool:
    # typing.List, typing.Optional and friends imported under their own name
    own_name = getattr(value, "_name", None) or getattr(value, "__name__", None)
    return own_name == name and getattr(value, "__module__", None) in (
        "typing",
        "typing_extensions",
        "collections.abc",
    )


def classify_value(
    name: str,
    value: object,
    module_name: str,
    root: str,
    alias_names: frozenset[str] = frozenset(),
) -> ConstructKind | None:
    """Decide once what kind of construct a namespace entry is.

    Returns None for entries that are not documented: private names, imports
    from outside the package, `__future__` features and type variables.
    """
    if name.startswith("_"):
        return None
    if isinstance(value, types.ModuleType):
        if value.__name__ == f"{module_name}.{name}":
            return ConstructKind.MODULE
        return None
    if isinstance(value, (_FUTURE_FEATURE,) + _TYPE_PARAMETER_TYPES):
        return None
    if name in alias_names:
        return ConstructKind.CONSTANT
    if _is_reexported_form(name, value):
        return None
    if _is_type_alias_value(value):
        return ConstructKind.CONSTANT
    if isinstance(value, type):
        if _defined_here(value.__module__, module_name, root):
            return ConstructKind.CLASS
        return None
    if inspect.isfunction(value) or inspect.isbuiltin(value):
        if _defined_here(getattr(value, "__module__", None), module_name, root):
            return ConstructKind.METHOD
        return None
    return ConstructKind.CONSTANT


def _parameter_scope(parameters: tuple[TypeParameter, ...]) -> frozenset[str]:
    return frozenset(parameter.name for parameter in parameters)


def _used_type_variables(annotations: list[object]) -> list[object]:
    found: dict[str, object] = {}
    for annotation in annotations:
        if isinstance(annotation, _TYPE_PARAMETER_TYPES):
            candidates: tuple[object, ...] = (annotation,)
        elif isinstance(annotation, (typing.ParamSpecArgs, typing.ParamSpecKwargs)):
            candidates = (annotation.__origin__,)
        elif isinstance(annotation, type):
            # a bare generic class is not parameterized by its own variables
            continue
        else:
            candidates = getattr(annotation, "__parameters__", ())
            if not isinstance(candidates, tuple):
                continue
        for variable in candidates:
            if isinstance(variable, _TYPE_PARAMETER_TYPES):
                found.setdefault(variable.__name__, variable)
    return list(found.values())


OPAQUE_PARAMETERS = (
    Parameter("args", "var_positional", UNKNOWN),
    Parameter("kwargs", "var_keyword", UNKNOWN),
)


def extract_signature(
    func: object,
    *,
    receiver: bool = False,
    decorator: str | None = None,
    scope: frozenset[str] = frozenset(),
) -> tuple[MethodSignature, tuple[TypeParameter, ...]]:
    """Extract a MethodSignature and the type variables it introduces.

    Callables without an introspectable signature become
    `(*args: Any, **kwargs: Any) -> Any`. Unresolvable annotations fall
    back to their raw form, then to UNKNOWN.
    """
    is_async = inspect.iscoroutinefunction(func)
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        leading = (Parameter("self", "positional_or_keyword", None),) if receiver else ()
        return (
            MethodSignature(leading + OPAQUE_PARAMETERS, UNKNOWN, decorator, is_async),
            (),
        )
    try:
        hints = typing.get_type_hints(func)
    except Exception:
        hints = {}

    raw_annotations: list[object] = []
    parameters: list[Parameter] = []
    for index, param in enumerate(signature.parameters.values()):
        kind = param.kind.name.lower()
        has_default = param.default is not _EMPTY
        raw = hints.get(param.name, param.annotation)
        if raw is _EMPTY:
            annotation = None if receiver and index == 0 else UNKNOWN
        else:
            raw_annotations.append(raw)
            annotation = _type_or_unknown(raw)
        parameters.append(Parameter(param.name, kind, annotation, has_default))

    raw_return = hints.get("return", signature.return_annotation)
    if raw_return is not _EMPTY:
        raw_annotations.append(raw_return)
        return_type = _type_or_unknown(raw_return)
    elif getattr(func, "__name__", None) == "__init__":
        return_type = NONE
    else:
        return_type = UNKNOWN

    introduced = tuple(
        type_parameter_from(variable)
        for variable in _used_type_variables(raw_annotations)
        if variable.__name__ not in scope
    )
    return (
        MethodSignature(tuple(parameters), return_type, decorator, is_async),
        introduced,
    )


def _discover_method(
    qualified: str,
    func: object,
    *,
    receiver: bool,
    decorator: str | None = None,
    scope: frozenset[str] = frozenset(),
) -> DocumentableConstruct:
    signature, introduced = extract_signature(
        func, receiver=receiver, decorator=decorator, scope=scope
    )
    return DocumentableConstruct(
        qualified_name=qualified,
        kind=ConstructKind.METHOD,
        type=signature.return_type,
        generic_parameters=introduced,
        method_signature=signature,
    )


def _constant(qualified: str, value: object, annotation: object = _EMPTY) -> DocumentableConstruct:
    if annotation is not _EMPTY and annotation is not typing.Final:
        node = _type_or_unknown(annotation)
    else:
        try:
            node = value_type_node(value)
        except ExtractionAmbiguous:
            node = UNKNOWN
    return DocumentableConstruct(qualified, ConstructKind.CONSTANT, node)


def _alias(qualified: str, value: object) -> DocumentableConstruct:
    body = value.__value__ if _TYPE_ALIAS_TYPE is not None and isinstance(
        value, _TYPE_ALIAS_TYPE
    ) else value
    return DocumentableConstruct(
        qualified, ConstructKind.CONSTANT, Alias(_type_or_unknown(body))
    )


def _class_bases(cls: type) -> tuple[TypeNode, ...]:
    raw_bases = cls.__dict__.get("__orig_bases__", cls.__bases__)
    return tuple(_type_or_unknown(base) for base in raw_bases if base is not object)


def _discover_class_member(
    cls: type, name: str, value: object, scope: frozenset[str]
) -> DocumentableConstruct | None:
    qualified = f"{cls.__module__}.{cls.__qualname__}.{name}"
    if name.startswith("_") and name not in DOCUMENTED_DUNDERS:
        return None
    if isinstance(value, staticmethod):
        return _discover_method(
            qualified, value.__func__, receiver=False, decorator="staticmethod", scope=scope
        )
    if isinstance(value, classmethod):
        return _discover_method(
            qualified, value.__func__, receiver=True, decorator="classmethod", scope=scope
        )
    if isinstance(value, property):
        if value.fget is None:
            return None
        return _discover_method(
            qualified, value.fget, receiver=True, decorator="property", scope=scope
        )
    if isinstance(value, cached_property):
        return _discover_method(
            qualified, value.func, receiver=True, decorator="property", scope=scope
        )
    if isinstance(value, _SLOT_DESCRIPTOR_TYPES):
        # unannotated __slots__ entry; annotated ones were handled by the caller
        return DocumentableConstruct(qualified, ConstructKind.CONSTANT, UNKNOWN)
    if inspect.isfunction(value):
        return _discover_method(qualified, value, receiver=True, scope=scope)
    if isinstance(value, type):
        if value.__qualname__ == f"{cls.__qualname__}.{name}":
            return _discover_class(value, qualified, scope)
        return None
    if callable(value):
        return None
    return _constant(qualified, value)


def _discover_class(
    cls: type, qualified: str, outer_scope: frozenset[str] = frozenset()
) -> DocumentableConstruct:
    declared = tuple(
        type_parameter_from(variable)
        for variable in getattr(cls, "__parameters__", ())
        if isinstance(variable, _TYPE_PARAMETER_TYPES)
    )
    scope = outer_scope | _parameter_scope(declared)

    members: list[DocumentableConstruct] = []
    seen: set[str] = set()
    for name, annotation in _own_annotations(cls).items():
        if name.startswith("_"):
            continue
        seen.add(name)
        members.append(
            _constant(f"{qualified}.{name}", cls.__dict__.get(name), annotation)
        )
    for name, value in cls.__dict__.items():
        if name in seen:
            continue
        member = _discover_class_member(cls, name, value, scope)
        if member is not None:
            members.append(member)

    return DocumentableConstruct(
        qualified_name=qualified,
        kind=ConstructKind.CLASS,
        type=Simple(qualified),
        generic_parameters=declared,
        bases=_class_bases(cls),
        members=tuple(members),
    )


def _namespace_names(module: types.ModuleType) -> list[str]:
    # `__all__` is looked up in the module dict so a module-level
    # __getattr__ is never consulted for it
    exported = vars(module).get("__all__")
    if isinstance(exported, (list, tuple)) and all(
        isinstance(name, str) for name in exported
    ):
        return list(exported)
    return list(vars(module))


def _discover_module(
    module: types.ModuleType, root: str, visited: set[str]
) -> list[DocumentableConstruct]:
    module_name = module.__name__
    annotations = _own_annotations(module)
    alias_names = frozenset(
        name
        for name, annotation in annotations.items()
        if _is_type_alias_annotation(annotation)
    )

    constructs: list[DocumentableConstruct] = []
    submodules: list[types.ModuleType] = []
    for name in _namespace_names(module):
        qualified = f"{module_name}.{name}"
        try:
            value = getattr(module, name)
        except AttributeError:
            continue
        except Exception:
            # lazy exports resolved by a module-level __getattr__ may fail
            if not name.startswith("_"):
                constructs.append(
                    DocumentableConstruct(qualified, ConstructKind.CONSTANT, UNKNOWN)
                )
            continue
        kind = classify_value(name, value, module_name, root, alias_names)
        if kind is None:
            continue
        if kind is ConstructKind.MODULE:
            submodules.append(value)
        elif kind is ConstructKind.CLASS:
            constructs.append(_discover_class(value, qualified))
        elif kind is ConstructKind.METHOD:
            constructs.append(_discover_method(qualified, value, receiver=False))
        elif name in alias_names or _is_type_alias_value(value):
            constructs.append(_alias(qualified, value))
        else:
            constructs.append(_constant(qualified, value, annotations.get(name, _EMPTY)))

    for submodule in submodules:
        if submodule.__name__ in visited:
            continue
        visited.add(submodule.__name__)
        constructs.append(
            DocumentableConstruct(
                qualified_name=submodule.__name__,
                kind=ConstructKind.MODULE,
                type=Simple(submodule.__name__),
                members=tuple(_discover_module(submodule, root, visited)),
            )
        )
    return constructs


def discover(package: types.ModuleType) -> tuple[DocumentableConstruct, ...]:
    """Walk a loaded package and return its documentable constructs.

    The root namespace comes first, followed by one MODULE construct per
    public submodule (depth-first, in encounter order). The order depends
    only on the package's namespaces, so repeated walks over an unchanged
    package are identical.

    Args:
        package: An imported package or module.

    Returns:
        Ordered tuple of constructs. Type extraction never fails: anything
        undeterminable is UNKNOWN.
    """
    root = package.__name__
    return tuple(_discover_module(package, root, {root}))


# ===--- Version-gated serializer ---=== #


_DOTTED_NAME_RE = re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*)+$")
_FROM_IMPORT_MODULES = frozenset({"typing", "typing_extensions"})

GENERIC_FAMILY_CAPABILITIES: dict[str, Capability] = {
    name: Capability.GENERIC_WEAK_COLLECTIONS
    for name, _arity in WEAK_COLLECTION_TEMPLATES.values()
}
"""Generic bases whose type arguments are only rendered with a capability."""


def _split_module(name: str) -> tuple[str, str]:
    """Split a dotted name into (module, attribute path).

    The longest loaded module prefix wins, so nested classes keep their
    owning module: "pkg.mod.Outer.Inner" -> ("pkg.mod", "Outer.Inner").
    """
    parts = name.split(".")
    for index in range(len(parts) - 1, 0, -1):
        module = ".".join(parts[:index])
        if module in sys.modules:
            return module, ".".join(parts[index:])
    module, _, attr = name.rpartition(".")
    return module, attr


@dataclass
class RenderContext:
    """Per-file rendering state: required imports and declared type parameters.

    One context is used for a whole interface file, so a type variable is
    declared only once and the import block covers every rendered name.
    """

    package: str = ""
    imports: set[tuple[str, str | None]] = field(default_factory=set)
    declared_type_parameters: set[str] = field(default_factory=set)

    def require(self, module: str, name: str | None = None) -> None:
        self.imports.add((module, name))

    def display_name(self, name: str, *, anchored: bool = False) -> str:
        """Return how `name` is spelled in the stub and record its import.

        Undotted names are verbatim. Anchored names keep their full module
        path (`builtins.str`). Names defined in the package root, or in a
        private module of the package, are local; names from public
        submodules keep their dotted path and import the submodule.
        """
        if not _DOTTED_NAME_RE.match(name):
            return name
        if name.partition(".")[0] in self.declared_type_parameters:
            return name
        module, attr = _split_module(name)
        if anchored:
            self.require(module)
            return name
        if module == "builtins":
            return attr
        if module in _FROM_IMPORT_MODULES:
            self.require(module, attr.partition(".")[0])
            return attr
        if self.package and _within_package(module, self.package):
            inner = module[len(self.package) :].split(".")[1:]
            if not inner or any(part.startswith("_") for part in inner):
                return attr
        self.require(module)
        return name


def _render_unknown(context: RenderContext) -> str:
    context.require("typing", "Any")
    return "Any"


def _render_class_type(node: ClassType, context: RenderContext, *, anchored: bool) -> str:
    return f"type[{context.display_name(node.referenced_name, anchored=anchored)}]"


def _render_generic(
    node: Generic, caps: frozenset[Capability], context: RenderContext
) -> str:
    if not node.type_arguments:
        raise AssemblyError(f"Generic {node.base_name} has no type arguments")
    base = context.display_name(node.base_name)
    required = GENERIC_FAMILY_CAPABILITIES.get(node.base_name)
    if required is not None and required not in caps:
        return base
    arguments = ", ".join(_render(arg, caps, context) for arg in node.type_arguments)
    return f"{base}[{arguments}]"


def _render_union_members(
    node: Union, caps: frozenset[Capability], context: RenderContext, class_member
) -> str:
    rendered = []
    for member in node.members:
        if isinstance(member, ClassType):
            rendered.append(class_member(member))
        else:
            rendered.append(_render(member, caps, context))
    return " | ".join(rendered)


def _union_with_qualified_classes(node, caps, context) -> str:
    return _render_union_members(
        node,
        caps,
        context,
        lambda member: _render_class_type(member, context, anchored=True),
    )


def _union_with_unknown_classes(node, caps, context) -> str:
    return _render_union_members(
        node, caps, context, lambda member: _render_unknown(context)
    )


def _union_collapsed(node, caps, context) -> str:
    return _render_unknown(context)


UNION_CLASS_STRATEGIES = (
    (
        frozenset(
            {Capability.CLASS_TYPE_IN_UNION, Capability.QUALIFIED_CLASS_NAME_IN_UNION}
        ),
        _union_with_qualified_classes,
    ),
    (frozenset({Capability.CLASS_TYPE_IN_UNION}), _union_with_unknown_classes),
    (frozenset(), _union_collapsed),
)
"""Rendering strategies for unions holding a class type, most capable first.

The first entry whose required capabilities are all present is used. New
cutoffs are added as new rows."""


def _render_union(
    node: Union, caps: frozenset[Capability], context: RenderContext
) -> str:
    if not node.members:
        raise AssemblyError("Union has no members")
    if any(isinstance(member, ClassType) for member in node.members):
        for required, strategy in UNION_CLASS_STRATEGIES:
            if required <= caps:
                return strategy(node, caps, context)
    return " | ".join(_render(member, caps, context) for member in node.members)


def _render(node: TypeNode, caps: frozenset[Capability], context: RenderContext) -> str:
    if isinstance(node, Simple):
        return context.display_name(node.name)
    if isinstance(node, Unknown):
        return _render_unknown(context)
    if isinstance(node, Anything):
        return "object"
    if isinstance(node, ClassType):
        return _render_class_type(node, context, anchored=False)
    if isinstance(node, Generic):
        return _render_generic(node, caps, context)
    if isinstance(node, Union):
        return _render_union(node, caps, context)
    if isinstance(node, Alias):
        context.require("typing", "TypeAlias")
        return f"TypeAlias = {_render(node.body, caps, context)}"
    raise AssemblyError(f"Unknown type node: {node!r}")


def render(
    node: TypeNode,
    caps: frozenset[Capability],
    context: RenderContext | None = None,
) -> str:
    """Render a type node to stub text for a capability set.

    For a given context package the text depends only on (node, caps); the
    context also collects the imports the text needs.

    Raises:
        AssemblyError: The node violates a model invariant.
    """
    if context is None:
        context = RenderContext()
    return _render(normalize(node), caps, context)


def format_type_parameter(
    parameter: TypeParameter, caps: frozenset[Capability], context: RenderContext
) -> str:
    context.require("typing", parameter.kind)
    arguments = [f'"{parameter.name}"']
    arguments.extend(render(c, caps, context) for c in parameter.constraints)
    if parameter.bound is not None:
        arguments.append(f"bound={render(parameter.bound, caps, context)}")
    if parameter.covariant:
        arguments.append("covariant=True")
    if parameter.contravariant:
        arguments.append("contravariant=True")
    return f"{parameter.name} = {parameter.kind}({', '.join(arguments)})"


def _collect_type_parameters(
    construct: DocumentableConstruct,
) -> list[TypeParameter]:
    collected = list(construct.generic_parameters)
    if construct.kind is ConstructKind.CLASS:
        for member in construct.members:
            collected.extend(_collect_type_parameters(member))
    return collected


def _type_parameter_declarations(
    construct: DocumentableConstruct,
    caps: frozenset[Capability],
    context: RenderContext,
) -> list[str]:
    lines: list[str] = []
    for parameter in _collect_type_parameters(construct):
        if parameter.name in context.declared_type_parameters:
            continue
        context.declared_type_parameters.add(parameter.name)
        lines.append(format_type_parameter(parameter, caps, context))
    return lines


def format_parameters(
    parameters: tuple[Parameter, ...],
    caps: frozenset[Capability],
    context: RenderContext,
) -> str:
    parts: list[str] = []
    has_var_positional = any(p.kind == "var_positional" for p in parameters)
    for index, parameter in enumerate(parameters):
        if parameter.kind == "keyword_only" and not has_var_positional:
            if "*" not in parts:
                parts.append("*")
        prefix = {"var_positional": "*", "var_keyword": "**"}.get(parameter.kind, "")
        text = f"{prefix}{parameter.name}"
        if parameter.annotation is not None:
            text += f": {render(parameter.annotation, caps, context)}"
            if parameter.has_default:
                text += " = ..."
        elif parameter.has_default:
            text += "=..."
        parts.append(text)
        is_last_positional_only = parameter.kind == "positional_only" and (
            index + 1 == len(parameters)
            or parameters[index + 1].kind != "positional_only"
        )
        if is_last_positional_only:
            parts.append("/")
    return ", ".join(parts)


def _render_method(
    construct: DocumentableConstruct,
    caps: frozenset[Capability],
    context: RenderContext,
    indent: str,
) -> list[str]:
    signature = construct.method_signature
    if signature is None:
        signature = MethodSignature(OPAQUE_PARAMETERS, construct.type)
    lines: list[str] = []
    if signature.decorator:
        lines.append(f"{indent}@{signature.decorator}")
    keyword = "async def" if signature.is_async else "def"
    parameters = format_parameters(signature.parameters, caps, context)
    returns = render(signature.return_type, caps, context)
    lines.append(f"{indent}{keyword} {construct.name}({parameters}) -> {returns}: ...")
    return lines


def _render_class(
    construct: DocumentableConstruct,
    caps: frozenset[Capability],
    context: RenderContext,
    indent: str,
) -> list[str]:
    bases = ", ".join(render(base, caps, context) for base in construct.bases)
    header = f"{indent}class {construct.name}({bases}):" if bases else (
        f"{indent}class {construct.name}:"
    )
    if not construct.members:
        return [f"{header} ..."]
    lines = [header]
    for member in construct.members:
        lines.extend(_render_member(member, caps, context, indent + "    "))
    return lines


def _render_member(
    construct: DocumentableConstruct,
    caps: frozenset[Capability],
    context: RenderContext,
    indent: str = "",
) -> list[str]:
    if construct.kind is ConstructKind.CLASS:
        return _render_class(construct, caps, context, indent)
    if construct.kind is ConstructKind.METHOD:
        return _render_method(construct, caps, context, indent)
    if construct.kind is ConstructKind.MODULE:
        header = f"# module {construct.qualified_name}"
        if not construct.members:
            return [header]
        return [header, ""] + render_body(construct.members, caps, context)
    return [f"{indent}{construct.name}: {render(construct.type, caps, context)}"]


def render_construct(
    construct: DocumentableConstruct,
    caps: frozenset[Capability],
    context: RenderContext,
) -> list[str]:
    """Render one top-level construct, preceded by its type parameter declarations."""
    declarations: list[str] = []
    if construct.kind is not ConstructKind.MODULE:
        declarations = _type_parameter_declarations(construct, caps, context)
    lines = _render_member(construct, caps, context)
    if declarations:
        return declarations + [""] + lines
    return lines


def render_body(
    constructs: tuple[DocumentableConstruct, ...],
    caps: frozenset[Capability],
    context: RenderContext,
) -> list[str]:
    """Render constructs in order; multi-line fragments are set off by blank lines."""
    lines: list[str] = []
    previous_multiline = False
    for construct in constructs:
        fragment = render_construct(construct, caps, context)
        multiline = len(fragment) > 1
        if lines and (multiline or previous_multiline):
            lines.append("")
        lines.extend(fragment)
        previous_multiline = multiline
    return lines


def format_import_block(imports: set[tuple[str, str | None]]) -> list[str]:
    """Return sorted import lines: plain imports first, then from-imports."""
    plain = sorted({module for module, name in imports if name is None})
    from_imports: dict[str, set[str]] = defaultdict(set)
    for module, name in imports:
        if name is not None:
            from_imports[module].add(name)

    lines = [f"import {module}" for module in plain]
    for module in sorted(from_imports):
        lines.append(f"from {module} import {', '.join(sorted(from_imports[module]))}")
    return lines


# ===--- Compilation driver ---=== #


@dataclass(frozen=True)
class StubConfig:
    """Fixed formatting values embedded in every file header.

    Attributes:
        strictness: Checker directive on the first line, without "# ".
        regen_command: Command shown in the regeneration hint; the package
            name is appended.
        banner: Do-not-edit banner line.
    """

    strictness: str = DEFAULT_STRICTNESS
    regen_command: str = DEFAULT_REGEN_COMMAND
    banner: str = DO_NOT_EDIT_BANNER


@dataclass(frozen=True)
class InterfaceFile:
    """A fully assembled interface file; never mutated after assembly.

    Attributes:
        package_name: Import name of the compiled package.
        package_version: Version of the compiled package.
        header: Header comment lines.
        imports: Import lines required by the body.
        body: Rendered body lines.
    """

    package_name: str
    package_version: str
    header: tuple[str, ...]
    imports: tuple[str, ...]
    body: tuple[str, ...]

    @property
    def filename(self) -> str:
        return f"{self.package_name}@{self.package_version}.pyi"

    @property
    def source(self) -> str:
        """Complete file text: header, imports and body, with a trailing newline."""
        parts = list(self.header)
        if self.imports:
            parts.append("")
            parts.extend(self.imports)
        if self.body:
            parts.append("")
            parts.extend(self.body)
        return "\n".join(parts) + "\n"


def format_file_header(config: StubConfig, package_name: str) -> list[str]:
    """Return the comment lines at the top of a generated interface file.

    Output format:
        # pyright: basic

        # DO NOT EDIT MANUALLY
        # This is an autogenerated file for types exported from the `foo` package.
        # Please instead update this file by running `stubsmith foo`.

    Raises:
        ValueError: If package_name is empty.
    """
    if not package_name:
        raise ValueError("package_name must not be empty")
    return [
        f"# {config.strictness}",
        "",
        f"# {config.banner}",
        "# This is an autogenerated file for types exported from the "
        f"`{package_name}` package.",
        "# Please instead update this file by running "
        f"`{config.regen_command} {package_name}`.",
    ]


def resolve_package_version(package: types.ModuleType) -> str:
    """Return the installed version of a package, falling back to `__version__`."""
    top_level = package.__name__.partition(".")[0]
    distributions = importlib.metadata.packages_distributions().get(top_level, [])
    for distribution in distributions:
        try:
            return importlib.metadata.version(distribution)
        except importlib.metadata.PackageNotFoundError:
            continue
    version = vars(package).get("__version__")
    if isinstance(version, str) and version:
        return version
    return "0.0.0"


def compile_package(
    package: types.ModuleType,
    checker_version: "str | CheckerVersion",
    config: StubConfig = StubConfig(),
    registry: CapabilityRegistry = DEFAULT_REGISTRY,
    package_version: str | None = None,
) -> InterfaceFile:
    """Compile a loaded package into an InterfaceFile for one checker version.

    Capabilities are resolved once and shared by every construct. Either a
    complete InterfaceFile is returned or an exception is raised.

    Args:
        package: Imported package to document.
        checker_version: Detected checker version.
        config: Header formatting values.
        registry: Capability cutoffs.
        package_version: Overrides the detected package version.

    Returns:
        The assembled InterfaceFile.

    Raises:
        UnsupportedVersionError: checker_version does not parse.
        AssemblyError: A malformed type node reached the serializer.
    """
    version = parse_version(checker_version)
    caps = registry.capabilities_for(version)
    name = package.__name__
    context = RenderContext(package=name)
    body = render_body(discover(package), caps, context)
    return InterfaceFile(
        package_name=name,
        package_version=package_version or resolve_package_version(package),
        header=tuple(format_file_header(config, name)),
        imports=tuple(format_import_block(context.imports)),
        body=tuple(body),
    )


# ===--- Package loading and checker probing ---=== #


def load_package(name: str) -> types.ModuleType:
    """Import a package by name.

    Import-time code of third-party packages can raise anything; every
    failure is reported as PackageLoadError for that package only.
    """
    try:
        return importlib.import_module(name)
    except Exception as err:
        raise PackageLoadError(name, f"{type(err).__name__}: {err}") from err


def detect_checker_version(distribution: str) -> CheckerVersion:
    try:
        raw = importlib.metadata.version(distribution)
    except importlib.metadata.PackageNotFoundError as err:
        raise ConfigError(
            "CHECKER_NOT_FOUND",
            f"Type checker distribution is not installed: {distribution}",
            "Install it or pass --checker-version explicitly.",
        ) from err
    return parse_version(raw)


# ===--- Writer ---=== #


STATUS_CREATE = "create"
STATUS_UPDATE = "update"
STATUS_UNCHANGED = "unchanged"


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing one interface file.

    Attributes:
        filename: e.g. "foo@0.0.1.pyi".
        path: output_dir / filename, as given (not resolved).
        status: STATUS_CREATE, STATUS_UPDATE or STATUS_UNCHANGED.
        line_count: Newline characters in the content.
        byte_count: UTF-8 bytes of the content.
    """

    filename: str
    path: Path
    status: str
    line_count: int
    byte_count: int


def write_interface_file(output_dir: Path, interface: InterfaceFile) -> FileWriteResult:
    """Write an InterfaceFile unless identical content is already on disk.

    Raises:
        OSError: Propagated directly if the filesystem write fails.
    """
    output_dir = Path(output_dir)
    content = interface.source
    file_path = output_dir / interface.filename
    if file_path.exists():
        previous = file_path.read_text(encoding="utf-8")
        status = STATUS_UNCHANGED if previous == content else STATUS_UPDATE
    else:
        status = STATUS_CREATE
    if status != STATUS_UNCHANGED:
        output_dir.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
    return FileWriteResult(
        filename=interface.filename,
        path=file_path,
        status=status,
        line_count=content.count("\n"),
        byte_count=len(content.encode("utf-8")),
    )


# ===--- Batch runner ---=== #


@dataclass(frozen=True)
class CompileConfig:
    packages: tuple[str, ...]
    checker_version: CheckerVersion
    output_dir: Path
    registry: CapabilityRegistry = DEFAULT_REGISTRY
    stub_config: StubConfig = StubConfig()


@dataclass(frozen=True)
class ListConfig:
    registry: CapabilityRegistry
    checker_version: CheckerVersion | None


@dataclass(frozen=True)
class PackageOutcome:
    package: str
    result: FileWriteResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchResult:
    outcomes: tuple[PackageOutcome, ...]

    @property
    def exit_code(self) -> int:
        return 0 if all(outcome.ok for outcome in self.outcomes) else 1


def format_status_line(result: FileWriteResult) -> str:
    return f"{result.status:>12}  {result.path}"


def compile_one(name: str, config: CompileConfig) -> FileWriteResult:
    package = load_package(name)
    interface = compile_package(
        package, config.checker_version, config.stub_config, config.registry
    )
    return write_interface_file(config.output_dir, interface)


def _failed_outcome(name: str, message: str) -> PackageOutcome:
    print(f"Error: failed to compile {name}: {message}")
    return PackageOutcome(name, error=message)


def run_compile(config: CompileConfig) -> BatchResult:
    """Compile every configured package; a failing package does not stop the rest."""
    outcomes: list[PackageOutcome] = []
    for name in config.packages:
        try:
            result = compile_one(name, config)
        except (PackageLoadError, AssemblyError, ConfigError, OSError) as err:
            outcomes.append(_failed_outcome(name, str(err)))
            continue
        except Exception as err:
            # third-party code runs during the walk; isolate its failures
            outcomes.append(_failed_outcome(name, f"{type(err).__name__}: {err}"))
            continue
        print(f"Compiled {name}")
        print(format_status_line(result))
        outcomes.append(PackageOutcome(name, result=result))
    return BatchResult(tuple(outcomes))


def format_capabilities_table(
    registry: CapabilityRegistry, version: CheckerVersion | None = None
) -> str:
    """Render the capability cutoffs, with availability when a version is given."""
    lines = ["Capabilities:", ""]
    available = registry.capabilities_for(version) if version is not None else None
    for rule in sorted(
        registry.rules, key=lambda r: (r.introduced_at, r.capability.value)
    ):
        revoked = str(rule.revoked_at) if rule.revoked_at is not None else "-"
        row = f"  {rule.capability.value:<32}{str(rule.introduced_at):<14}{revoked:<14}"
        if available is not None:
            row += "yes" if rule.applies_to(version) else "no"
        lines.append(row.rstrip())
    if version is not None:
        active = sum(1 for rule in registry.rules if rule.applies_to(version))
        lines.append("")
        lines.append(f"  Checker: {version} ({active} of {len(registry.rules)} rules active)")
    return "\n".join(lines) + "\n"


# ===--- CLI ---=== #


def validate_path_exists(path: Path, flag: str) -> Path:
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        "Provide an existing path for this flag.",
    )


def validate_package_name(name: str) -> str:
    if _PACKAGE_NAME_RE.match(name):
        return name
    raise ConfigError(
        "INVALID_PACKAGE_NAME",
        f"Invalid package name: {name}",
        "Pass the import name of the package, e.g. requests or google.protobuf.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stubsmith",
        description="Generate version-gated .pyi interface files for installed packages",
    )
    parser.add_argument("packages", nargs="*")

    checker_group = parser.add_mutually_exclusive_group()
    checker_group.add_argument("--checker-version", type=str, default=None)
    checker_group.add_argument("--checker-dist", type=str, default=None)

    parser.add_argument("--capabilities", type=Path, default=None)
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--strictness", type=str, default=DEFAULT_STRICTNESS)
    parser.add_argument("--regen-command", type=str, default=DEFAULT_REGEN_COMMAND)
    parser.add_argument("--list-capabilities", action="store_true", default=False)
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_argument_parser().parse_args(argv)


def _resolve_checker_version(args: argparse.Namespace) -> CheckerVersion | None:
    if args.checker_version is not None:
        return parse_version(args.checker_version)
    if args.checker_dist is not None:
        return detect_checker_version(args.checker_dist)
    return None


def validate_config(args: argparse.Namespace) -> CompileConfig | ListConfig:
    registry = DEFAULT_REGISTRY
    if args.capabilities is not None:
        registry = load_capability_registry(
            validate_path_exists(args.capabilities, "--capabilities")
        )

    if args.list_capabilities:
        if args.packages:
            raise ConfigError(
                "CONFLICT_LIST_WITH_PACKAGES",
                "--list-capabilities cannot be combined with package names.",
                "Run the listing and the compilation separately.",
            )
        return ListConfig(registry=registry, checker_version=_resolve_checker_version(args))

    if not args.packages:
        raise ConfigError(
            "MISSING_PACKAGE",
            "No package to compile.",
            "Pass one or more package import names, e.g. stubsmith foo.",
        )
    packages = tuple(validate_package_name(name) for name in args.packages)

    checker_version = _resolve_checker_version(args)
    if checker_version is None:
        raise ConfigError(
            "MISSING_CHECKER_VERSION",
            "Compilation requires a checker version.",
            "Pass --checker-version X.Y.Z or --checker-dist <distribution>.",
        )

    return CompileConfig(
        packages=packages,
        checker_version=checker_version,
        output_dir=args.output_dir,
        registry=registry,
        stub_config=StubConfig(
            strictness=args.strictness, regen_command=args.regen_command
        ),
    )


def build_config(argv: list[str] | None = None) -> CompileConfig | ListConfig:
    return validate_config(parse_args(argv))


def main(argv: list[str] | None = None) -> None:
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    if isinstance(config, ListConfig):
        print(format_capabilities_table(config.registry, config.checker_version), end="")
        return

    batch = run_compile(config)
    if batch.exit_code:
        raise SystemExit(batch.exit_code)


if __name__ == "__main__":
    main()
