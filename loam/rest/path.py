"""Composable URL templates.

Example:
    >>> str(base_path("/pets").param("id").segment("photos"))
    '/pets/{id}/photos'
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loam.rest.errors import DuplicatePathParameterError

if TYPE_CHECKING:
    from loam.rest.parameter import ParameterOption

_REPEATED_SLASHES = re.compile(r"/{2,}")
_PLACEHOLDER = re.compile(r"^\{([^{}/]+)\}$")


@dataclass(frozen=True)
class PathParam:
    """A ``{name}`` placeholder and the options of the parameter it declares."""

    name: str
    options: tuple[ParameterOption, ...] = ()

    def __str__(self) -> str:
        return "{" + self.name + "}"


type PathElement = str | PathParam


@dataclass(frozen=True)
class Path:
    """An ordered sequence of literal segments and parameter placeholders.

    Paths are values: ``segment`` and ``param`` return a new path and leave
    the receiver untouched, so a common prefix can be shared freely.
    """

    elements: tuple[PathElement, ...] = ()

    def segment(self, segment: str) -> Path:
        """Append a literal segment."""
        return Path((*self.elements, segment))

    def param(self, name: str, *options: ParameterOption) -> Path:
        """Append a path parameter placeholder.

        Args:
            name: Parameter name, matched against the router's path variable.
            *options: Parameter options such as ``required()`` or ``regex()``.

        Returns:
            Path: The extended path.
        """
        return Path((*self.elements, PathParam(name, tuple(options))))

    def params(self) -> Iterator[PathParam]:
        """Iterate over the parameter placeholders in order."""
        return (el for el in self.elements if isinstance(el, PathParam))

    def render(self) -> str:
        """Render the template with exactly one slash between elements."""
        rendered = "/" + "/".join(str(el) for el in self.elements)
        rendered = _REPEATED_SLASHES.sub("/", rendered)
        if len(rendered) > 1:
            rendered = rendered.rstrip("/")
        return rendered

    def validate(self) -> None:
        """Reject paths declaring the same parameter twice.

        Raises:
            DuplicatePathParameterError: If a parameter name repeats.
        """
        seen: set[str] = set()
        for param in self.params():
            if param.name in seen:
                raise DuplicatePathParameterError(self.render(), param.name)
            seen.add(param.name)

    def __str__(self) -> str:
        return self.render()

    @classmethod
    def parse(cls, template: str) -> Path:
        """Build a path from a template such as ``/pets/{id}``.

        Every ``{name}`` segment becomes a parameter without options.
        """
        elements: list[PathElement] = []
        for segment in template.split("/"):
            if not segment:
                continue
            match = _PLACEHOLDER.match(segment)
            elements.append(PathParam(match.group(1)) if match else segment)
        return cls(tuple(elements))


def base_path(segment: str) -> Path:
    """Start a path from its first literal segment."""
    return Path((segment,))


type PathLike = Path | str


def as_path(path: PathLike) -> Path:
    """Return ``path`` itself, or the parsed template when given a string."""
    return path if isinstance(path, Path) else Path.parse(path)
