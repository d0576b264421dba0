#!/usr/bin/env python3
"""
Inlay - hold values, inlay them into text, pull in sibling units.

Reads one element from a heterogeneous sequence, interpolates it into a
fixed template, prints the line, then loads a companion source unit by a
path relative to this file (at most once per process).

Architecture: Functional Core, Imperative Shell
- Data: dataclasses
- Computations: pure functions (no I/O, no printing)
- Renderers: pure functions (data → str)
- Actions: read/execute/print at edges only
"""

from __future__ import annotations

import functools
import inspect
import logging
import operator
import re
import string
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import structlog

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.ConsoleRenderer(colors=False),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# ERRORS
# =============================================================================


class InlayError(Exception):
    """Base class for every condition raised by inlay."""


class OutOfRange(InlayError, IndexError):
    """Indexed read outside ``[0, length)``."""

    def __init__(self, index: int, length: int) -> None:
        super().__init__(f"index {index} out of range for {length} elements")
        self.index = index
        self.length = length


class SourceNotFound(InlayError, FileNotFoundError):
    """A unit path that does not resolve to a readable file."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"{path} does not exist")
        self.path = path


class LoadError(InlayError):
    """A loaded unit raised while running its top-level statements."""

    def __init__(self, path: Path, cause: BaseException) -> None:
        super().__init__(f"failed to load {path}: {cause!r}")
        self.path = path
        self.cause = cause


class TemplateError(InlayError):
    """A template slot that cannot be evaluated."""


# =============================================================================
# DOMAIN TYPES (Data)
# =============================================================================


@dataclass(frozen=True, eq=False)
class ValueHolder:
    """
    Wraps an ordered, heterogeneous sequence.

    ``elements`` is the very object handed to the constructor: no copy and no
    coercion, so callers holding the original see the same storage.
    """

    elements: Sequence[Any]

    def __len__(self) -> int:
        return len(self.elements)

    def __getitem__(self, index: int) -> Any:
        # Negative indices are out of range, they do not count from the end.
        position = operator.index(index)
        if not 0 <= position < len(self.elements):
            raise OutOfRange(position, len(self.elements))
        return self.elements[position]


@dataclass(frozen=True)
class TextSegment:
    """Literal text copied verbatim into the output."""

    text: str


@dataclass(frozen=True)
class SlotSegment:
    """An access expression such as ``value`` or ``holder[2]``."""

    expression: str


Segment = TextSegment | SlotSegment


@dataclass(frozen=True)
class Template:
    """A parsed template: literal and slot segments in source order."""

    source: str
    segments: tuple[Segment, ...]

    @property
    def slots(self) -> tuple[SlotSegment, ...]:
        return tuple(s for s in self.segments if isinstance(s, SlotSegment))


def _default_elements() -> list[Any]:
    return [1, 2, "three"]


@dataclass(frozen=True)
class InlayConfig:
    """Everything a run needs, passed explicitly."""

    elements: Sequence[Any] = field(default_factory=_default_elements)
    index: int = 2
    template: str = "Test value: {value}"
    include: str = "./companion.py"  # relative to this file
    log_level: str = "WARNING"


# =============================================================================
# PURE FUNCTIONS (Computations) - No I/O, no side effects, no printing
# =============================================================================


_FIELDS = string.Formatter()
_ROOT_NAME = re.compile(r"\w+")
_ACCESS = re.compile(r"\.(\w+)|\[([^\]]+)\]")
_INTEGER_KEY = re.compile(r"-?\d+")


def parse_template(source: str) -> Template:
    """
    Split a template into literal and slot segments.

    Slots use ``{...}`` syntax with ``{{`` and ``}}`` as escapes. Only named
    access expressions are accepted; format specs, conversions and positional
    slots raise TemplateError.

    Pure: str -> Template
    """
    try:
        parsed = list(_FIELDS.parse(source))
    except ValueError as exc:
        raise TemplateError(f"malformed template {source!r}: {exc}") from exc

    segments: list[Segment] = []
    for literal, expression, spec, conversion in parsed:
        if literal:
            segments.append(TextSegment(literal))
        if expression is None:
            continue
        if not expression or expression[0].isdigit():
            raise TemplateError(f"positional slot in {source!r}, use a name")
        if spec or conversion:
            raise TemplateError(
                f"slot {{{expression}}} carries a format spec or conversion, "
                "only plain access expressions are supported"
            )
        segments.append(SlotSegment(expression))

    return Template(source=source, segments=tuple(segments))


def evaluate_slot(slot: SlotSegment, values: Mapping[str, Any]) -> Any:
    """
    Evaluate one access expression against the supplied values.

    Indexing goes through the target's own ``__getitem__`` with integer keys
    (signed) converted to ``int``, so a ValueHolder raises OutOfRange for a
    bad index. Any other failed lookup raises TemplateError.

    Pure: (SlotSegment, Mapping) -> Any
    """
    expression = slot.expression
    root = _ROOT_NAME.match(expression)
    if root is None or root.group() not in values:
        raise TemplateError(f"no value supplied for slot {{{expression}}}")

    value = values[root.group()]
    position = root.end()
    try:
        while position < len(expression):
            access = _ACCESS.match(expression, position)
            if access is None:
                raise TemplateError(f"malformed access expression {{{expression}}}")
            attribute, key = access.groups()
            if attribute is not None:
                value = getattr(value, attribute)
            else:
                value = value[int(key) if _INTEGER_KEY.fullmatch(key) else key]
            position = access.end()
    except OutOfRange:
        raise
    except (AttributeError, KeyError, IndexError, TypeError) as exc:
        raise TemplateError(f"cannot evaluate slot {{{expression}}}: {exc!r}") from exc
    return value


def format_template(template: str | Template, values: Mapping[str, Any]) -> str:
    """
    Build one string from a template and its slot values.

    Every slot is evaluated before any text is composed; segments are then
    joined in source order using ``str()`` of each value.

    Pure: (str | Template, Mapping) -> str
    """
    parsed = template if isinstance(template, Template) else parse_template(template)
    evaluated = iter([evaluate_slot(slot, values) for slot in parsed.slots])

    parts: list[str] = []
    for segment in parsed.segments:
        if isinstance(segment, TextSegment):
            parts.append(segment.text)
        else:
            parts.append(str(next(evaluated)))
    return "".join(parts)


def render_line(holder: ValueHolder, index: int, template: str) -> str:
    """Read ``holder[index]`` and inlay it as ``value``. Pure."""
    return format_template(template, {"value": holder[index], "holder": holder})


def resolve_unit_path(relative: str | Path, directory: Path) -> Path:
    """
    Resolve a unit path against the directory of the executing unit.

    A path without a suffix gets ``.py`` appended.

    Pure (apart from symlink resolution): (str | Path, Path) -> Path
    """
    candidate = Path(relative)
    if not candidate.suffix:
        candidate = candidate.with_name(candidate.name + ".py")
    return (directory / candidate).resolve()


# =============================================================================
# RENDERERS (Pure: Data -> str)
# =============================================================================


def render_error(error: BaseException) -> str:
    """Render an error message. Pure: exception -> str."""
    return f"Error: {error}"


# =============================================================================
# ACTIONS (Effects) - I/O happens here only
# =============================================================================


def read_unit(path: Path) -> str:
    """Read a unit's source. Action."""
    if not path.is_file():
        raise SourceNotFound(path)
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SourceNotFound(path) from exc
    except UnicodeDecodeError as exc:
        raise LoadError(path, exc) from exc


_UNSET = object()


class ModuleLoader:
    """
    Runs source units into one shared namespace, each resolved path once.

    The namespace carries a ``require_relative`` binding, so a unit can pull
    in its own siblings; ``__file__`` names the unit currently executing.
    """

    def __init__(self, namespace: dict[str, Any] | None = None) -> None:
        self.namespace: dict[str, Any] = {} if namespace is None else namespace
        self.namespace.setdefault("require_relative", self._require_from_namespace)
        self._loaded: dict[Path, None] = {}

    @property
    def loaded_paths(self) -> tuple[Path, ...]:
        return tuple(self._loaded)

    def is_loaded(self, path: Path) -> bool:
        return path.resolve() in self._loaded

    def load(self, relative: str | Path, anchor: str | Path) -> bool:
        """
        Load ``relative`` resolved against the directory holding ``anchor``.

        Returns True when the unit ran, False when it was already loaded.
        Raises SourceNotFound for a missing unit and LoadError when the unit
        itself raises. Bindings made before a failure are kept; the path is
        forgotten so a later load runs it again.
        """
        return self._load_from(relative, Path(anchor).resolve().parent)

    def _require_from_namespace(self, relative: str | Path) -> bool:
        # Only reachable while a unit runs, so __file__ is always set.
        return self._load_from(relative, Path(self.namespace["__file__"]).parent)

    def _load_from(self, relative: str | Path, directory: Path) -> bool:
        path = resolve_unit_path(relative, directory)
        if path in self._loaded:
            logger.debug("unit_already_loaded", path=str(path))
            return False

        source = read_unit(path)
        self._loaded[path] = None
        try:
            self._execute(source, path)
        except LoadError:
            del self._loaded[path]
            raise
        except Exception as exc:
            del self._loaded[path]
            logger.warning("unit_failed", path=str(path), error=repr(exc))
            raise LoadError(path, exc) from exc
        except BaseException:
            # SystemExit and friends pass through, the unit never finished
            del self._loaded[path]
            raise

        logger.debug("unit_loaded", path=str(path))
        return True

    def _execute(self, source: str, path: Path) -> None:
        code = compile(source, str(path), "exec")
        previous = self.namespace.get("__file__", _UNSET)
        self.namespace["__file__"] = str(path)
        try:
            exec(code, self.namespace)
        finally:
            if previous is _UNSET:
                self.namespace.pop("__file__", None)
            else:
                self.namespace["__file__"] = previous


@functools.lru_cache(maxsize=None)
def default_loader() -> ModuleLoader:
    """The process-wide loader."""
    return ModuleLoader()


def require_relative(relative: str | Path) -> bool:
    """Load ``relative`` next to the calling file, once per process. Action."""
    caller = inspect.currentframe().f_back
    anchor = caller.f_globals.get("__file__") if caller is not None else None
    if anchor is None:
        return default_loader()._load_from(relative, Path.cwd())
    return default_loader().load(relative, anchor)


def configure_logging(level: str) -> None:
    """Send log records to stderr so stdout only carries program output."""
    logging.basicConfig(stream=sys.stderr, level=level.upper(), format="%(message)s")


# =============================================================================
# MAIN (Orchestration) - Wiring only
# =============================================================================


def run(
    config: InlayConfig,
    write: Callable[[str], Any] = print,
    loader: ModuleLoader | None = None,
) -> str:
    """
    Print the test line, then pull in the companion unit.

    The line is written before the include runs, so nothing the companion
    does can change it. Errors propagate.
    """
    # COMPUTATION: read and format (pure)
    holder = ValueHolder(config.elements)
    line = render_line(holder, config.index, config.template)

    # ACTION: print
    write(line)

    # ACTION: include
    (loader or default_loader()).load(config.include, Path(__file__))

    return line


def main() -> int:
    """Entry point. Runs with the default config, maps errors to exit code 1."""
    config = InlayConfig()
    configure_logging(config.log_level)
    logger.info("run_started", include=config.include, index=config.index)

    try:
        run(config)
    except InlayError as exc:
        print(render_error(exc), file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
