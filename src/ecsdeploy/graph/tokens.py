"""
Deferred values for desired-state declarations.

A token stands for a value that only exists once the provisioning engine
has created something (a physical id, a load balancer DNS name, an export
from another unit). Tokens render to CloudFormation intrinsic functions and
can be resolved directly by the in-memory engine.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol

PSEUDO_PREFIX = "AWS::"

_SUB_VAR_RE = re.compile(r"\$\{([^}!]+)\}")


class TokenResolver(Protocol):
    """What an engine must provide to turn tokens into concrete values."""

    def ref(self, logical_id: str) -> Any: ...

    def get_att(self, logical_id: str, attribute: str) -> Any: ...

    def import_value(self, export_name: str) -> Any: ...

    def pseudo(self, name: str) -> str: ...


class Token(ABC):
    """Base class for deferred values."""

    @abstractmethod
    def render(self) -> dict[str, Any]:
        """CloudFormation intrinsic function for this value."""

    @abstractmethod
    def resolve(self, resolver: TokenResolver) -> Any:
        """Concrete value, looked up through ``resolver``."""

    def children(self) -> tuple[Any, ...]:
        return ()


@dataclass(frozen=True)
class Ref(Token):
    logical_id: str

    def render(self) -> dict[str, Any]:
        return {"Ref": self.logical_id}

    def resolve(self, resolver: TokenResolver) -> Any:
        if self.logical_id.startswith(PSEUDO_PREFIX):
            return resolver.pseudo(self.logical_id)
        return resolver.ref(self.logical_id)


@dataclass(frozen=True)
class GetAtt(Token):
    logical_id: str
    attribute: str

    def render(self) -> dict[str, Any]:
        return {"Fn::GetAtt": [self.logical_id, self.attribute]}

    def resolve(self, resolver: TokenResolver) -> Any:
        return resolver.get_att(self.logical_id, self.attribute)


@dataclass(frozen=True)
class ImportValue(Token):
    export_name: str

    def render(self) -> dict[str, Any]:
        return {"Fn::ImportValue": self.export_name}

    def resolve(self, resolver: TokenResolver) -> Any:
        return resolver.import_value(self.export_name)


@dataclass(frozen=True)
class Sub(Token):
    """String substitution over pseudo parameters and logical ids."""

    template: str

    def render(self) -> dict[str, Any]:
        return {"Fn::Sub": self.template}

    def variables(self) -> list[str]:
        return _SUB_VAR_RE.findall(self.template)

    def resolve(self, resolver: TokenResolver) -> Any:
        def _replace(match: re.Match[str]) -> str:
            name = match.group(1)
            if name.startswith(PSEUDO_PREFIX):
                return str(resolver.pseudo(name))
            if "." in name:
                logical, attribute = name.split(".", 1)
                return str(resolver.get_att(logical, attribute))
            return str(resolver.ref(name))

        return _SUB_VAR_RE.sub(_replace, self.template)


@dataclass(frozen=True)
class Join(Token):
    delimiter: str
    values: tuple[Any, ...]

    def render(self) -> dict[str, Any]:
        return {"Fn::Join": [self.delimiter, [render(v) for v in self.values]]}

    def resolve(self, resolver: TokenResolver) -> Any:
        parts: list[str] = []
        for value in self.values:
            resolved = resolve(value, resolver)
            if isinstance(resolved, list):
                parts.extend(str(p) for p in resolved)
            else:
                parts.append(str(resolved))
        return self.delimiter.join(parts)

    def children(self) -> tuple[Any, ...]:
        return self.values


@dataclass(frozen=True)
class Split(Token):
    delimiter: str
    source: Any

    def render(self) -> dict[str, Any]:
        return {"Fn::Split": [self.delimiter, render(self.source)]}

    def resolve(self, resolver: TokenResolver) -> Any:
        return str(resolve(self.source, resolver)).split(self.delimiter)

    def children(self) -> tuple[Any, ...]:
        return (self.source,)


@dataclass(frozen=True)
class Select(Token):
    index: int
    source: Any

    def render(self) -> dict[str, Any]:
        return {"Fn::Select": [self.index, render(self.source)]}

    def resolve(self, resolver: TokenResolver) -> Any:
        return resolve(self.source, resolver)[self.index]

    def children(self) -> tuple[Any, ...]:
        return (self.source,)


@dataclass(frozen=True)
class GetAZs(Token):
    region: str = ""

    def render(self) -> dict[str, Any]:
        return {"Fn::GetAZs": self.region}

    def resolve(self, resolver: TokenResolver) -> Any:
        region = self.region or resolver.pseudo("AWS::Region")
        return [f"{region}{suffix}" for suffix in ("a", "b", "c")]


def render(value: Any) -> Any:
    """Render a value (possibly containing tokens) as CloudFormation JSON."""
    if isinstance(value, Token):
        return value.render()
    if isinstance(value, dict):
        return {k: render(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [render(v) for v in value]
    return value


def resolve(value: Any, resolver: TokenResolver) -> Any:
    """Replace every token in a value with its concrete counterpart."""
    if isinstance(value, Token):
        return value.resolve(resolver)
    if isinstance(value, dict):
        return {k: resolve(v, resolver) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve(v, resolver) for v in value]
    return value


def _walk(value: Any):
    if isinstance(value, Token):
        yield value
        for child in value.children():
            yield from _walk(child)
    elif isinstance(value, dict):
        for v in value.values():
            yield from _walk(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from _walk(v)


def references(value: Any) -> set[str]:
    """Logical ids a value depends on (pseudo parameters excluded)."""
    found: set[str] = set()
    for token in _walk(value):
        if isinstance(token, Ref) and not token.logical_id.startswith(PSEUDO_PREFIX):
            found.add(token.logical_id)
        elif isinstance(token, GetAtt):
            found.add(token.logical_id)
        elif isinstance(token, Sub):
            for name in token.variables():
                if not name.startswith(PSEUDO_PREFIX):
                    found.add(name.split(".", 1)[0])
    return found


def imports(value: Any) -> set[str]:
    """Export names a value imports from other units."""
    return {t.export_name for t in _walk(value) if isinstance(t, ImportValue)}
