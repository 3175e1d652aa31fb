#!/usr/bin/env python3
"""lsystem_turtle.py

L-system grammar expansion plus a step-wise turtle interpreter.

Key features:
- Context-free, single-symbol rewriting with an optional program size guard.
- Rule text parsing ("F=F+F;X=F[-X]") that reports rejected statements.
- Turtle with pose, pen style and an unbounded push/pop state stack.
- Stepper that walks a program forward one symbol at a time and steps
  backward by replaying the prefix from a freshly reset turtle.
- JSON settings files and SVG output of the drawn line segments.

Run:
  python lsystem_turtle.py render settings.json output.svg
  python lsystem_turtle.py trace settings.json --steps 20
  python lsystem_turtle.py --help
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import math
import os
import re
import sys
from collections.abc import Generator, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, cast

Point = tuple[float, float]

# Pen and canvas colors are opaque to the interpreter: either a CSS color
# string or a 32-bit ARGB integer.
Color = str | int


# -------------------------
# Errors / Validation
# -------------------------


class ConfigError(ValueError):
    pass


class ProgramTooLarge(ConfigError):
    """Raised by expand() when a pass would exceed the requested max_length."""

    def __init__(self, limit: int, iteration: int) -> None:
        super().__init__(
            f"program exceeds {limit} symbols at iteration {iteration}; "
            "lower iterations or raise the length limit"
        )
        self.limit = limit
        self.iteration = iteration


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _as_float(x: Any, path: str) -> float:
    _require(
        isinstance(x, (int, float)) and not isinstance(x, bool),
        f"{path} must be a number",
    )
    return float(x)


def _as_int(x: Any, path: str) -> int:
    _require(
        isinstance(x, int) and not isinstance(x, bool), f"{path} must be an integer"
    )
    return int(x)


def _as_str(x: Any, path: str) -> str:
    _require(isinstance(x, str), f"{path} must be a string")
    return cast(str, x)


def _as_dict(x: Any, path: str) -> dict[str, Any]:
    _require(isinstance(x, dict), f"{path} must be an object")
    return cast(dict[str, Any], x)


def _as_color(x: Any, path: str) -> Color:
    if isinstance(x, str):
        _require(bool(x.strip()), f"{path} must not be empty")
        return x
    _require(
        isinstance(x, int) and not isinstance(x, bool),
        f"{path} must be a color string or an ARGB integer",
    )
    # Signed values come from 32-bit ARGB packing (e.g. 0xFF008000 -> -16744448).
    _require(-(2**31) <= x <= 0xFFFFFFFF, f"{path} must fit in 32 bits")
    return int(x)


# -------------------------
# Grammar
# -------------------------


def expand(
    axiom: str,
    rules: dict[str, str],
    iterations: int,
    *,
    max_length: int | None = None,
) -> str:
    """Rewrite axiom with rules for the given number of passes.

    Each pass reads only the previous pass's complete output. Symbols
    without a rule are copied unchanged. When max_length is set,
    ProgramTooLarge is raised as soon as a pass grows past it. Once a pass
    leaves the string unchanged every later pass would too, so expansion
    stops there.
    """
    _require(iterations >= 0, "iterations must be >= 0")
    if max_length is not None and len(axiom) > max_length:
        raise ProgramTooLarge(max_length, 0)

    program = axiom
    for n in range(1, iterations + 1):
        parts: list[str] = []
        size = 0
        for ch in program:
            repl = rules.get(ch, ch)
            size += len(repl)
            if max_length is not None and size > max_length:
                raise ProgramTooLarge(max_length, n)
            parts.append(repl)
        rewritten = "".join(parts)
        if rewritten == program:
            break
        program = rewritten
    return program


def stream_expand(
    axiom: str, rules: dict[str, str], iterations: int
) -> Generator[str, None, None]:
    """Yield the symbols of expand() in order without building the string."""
    _require(iterations >= 0, "iterations must be >= 0")

    # Each frame is an iterator over a word and the pass depth it belongs to.
    frames: list[tuple[Iterator[str], int]] = [(iter(axiom), 0)]
    while frames:
        word, depth = frames[-1]
        ch = next(word, None)
        if ch is None:
            frames.pop()
            continue
        if depth < iterations and ch in rules:
            frames.append((iter(rules[ch]), depth + 1))
        else:
            yield ch


def expanded_length(
    axiom: str,
    rules: dict[str, str],
    iterations: int,
    *,
    limit: int | None = None,
) -> int:
    """Length of expand(axiom, rules, iterations), computed without expanding.

    With a limit, every per-symbol length saturates at limit + 1, so the
    result is min(length, limit + 1) and the numbers stay small however
    many iterations are requested.
    """
    _require(iterations >= 0, "iterations must be >= 0")
    cap = None if limit is None else limit + 1

    def _sat(n: int) -> int:
        return n if cap is None or n < cap else cap

    symbols = set(axiom) | set(rules) | set("".join(rules.values()))
    lengths = dict.fromkeys(symbols, 1)
    for _ in range(iterations):
        updated = {
            ch: _sat(sum(lengths[c] for c in rules[ch])) if ch in rules else 1
            for ch in symbols
        }
        if updated == lengths:
            break
        lengths = updated
    return _sat(sum(lengths[ch] for ch in axiom))


@dataclass(frozen=True)
class ParsedRules:
    rules: dict[str, str]
    # Statements skipped because they are not of the form "<symbol>=<word>".
    rejected: tuple[str, ...] = ()


_STATEMENT_SEP = re.compile(r"[;\r\n]")


def parse_rules(text: str) -> ParsedRules:
    """Parse rule text of newline- or ';'-separated "symbol=replacement" statements.

    Statements are split on the first '='. A statement is accepted only when
    its left-hand side, trimmed, is exactly one character. Everything else is
    skipped and listed in ParsedRules.rejected. Blank statements are ignored.

    Whitespace around the replacement is trimmed too ("F = F+F" reads as
    "F=F+F"); whitespace inside it is kept as symbols.
    """
    rules: dict[str, str] = {}
    rejected: list[str] = []
    for raw in _STATEMENT_SEP.split(text):
        statement = raw.strip()
        if not statement:
            continue
        lhs, sep, rhs = statement.partition("=")
        lhs = lhs.strip()
        if not sep or len(lhs) != 1:
            rejected.append(statement)
            continue
        rules[lhs] = rhs.strip()
    return ParsedRules(rules=rules, rejected=tuple(rejected))


def format_rules(rules: dict[str, str]) -> str:
    return ";".join(f"{k}={v}" for k, v in rules.items())


def parse_symbols(text: str) -> frozenset[str]:
    """Symbol set from a declaration like "F, X" or "+-[]"."""
    return frozenset(ch for ch in text if ch != "," and not ch.isspace())


def undeclared_symbols(
    axiom: str, rules: dict[str, str], variables: str, constants: str
) -> list[str]:
    """Symbols used by axiom or rules but declared as neither variable nor constant.

    Returns an empty list when nothing is declared at all. The declarations
    never influence expansion; this is purely a consistency report.
    """
    declared = parse_symbols(variables) | parse_symbols(constants)
    if not declared:
        return []
    used = axiom + "".join(k + v for k, v in rules.items())
    out: list[str] = []
    for ch in used:
        if ch not in declared and ch not in out and not ch.isspace():
            out.append(ch)
    return out


# -------------------------
# Turtle
# -------------------------


@dataclass(frozen=True)
class LineSegment:
    start_x: float
    start_y: float
    end_x: float
    end_y: float
    color: Color
    width: float

    @property
    def start(self) -> Point:
        return (self.start_x, self.start_y)

    @property
    def end(self) -> Point:
        return (self.end_x, self.end_y)


@dataclass(frozen=True)
class PoseSnapshot:
    x: float
    y: float
    heading: float
    pen_down: bool
    color: Color
    width: float


class Turtle:
    """Pose, pen style and a save/restore stack.

    Heading is in degrees. 0 points along +X and positive turns are
    clockwise on a screen whose Y axis grows downward, so right() adds
    to the heading and left() subtracts from it.
    """

    def __init__(
        self,
        x: float = 0.0,
        y: float = 0.0,
        *,
        color: Color = "#000",
        width: float = 1.0,
        pen_down: bool = False,
    ) -> None:
        self._stack: list[PoseSnapshot] = []
        self.reset(x, y, color=color, width=width, pen_down=pen_down)

    def reset(
        self,
        x: float,
        y: float,
        *,
        color: Color,
        width: float,
        pen_down: bool,
    ) -> None:
        self._x = float(x)
        self._y = float(y)
        self._heading = 0.0
        self._pen_down = pen_down
        self._color = color
        self._width = float(width)
        self._stack.clear()

    # Motion

    def forward(self, distance: float) -> LineSegment | None:
        rad = self._heading * math.pi / 180
        nx = self._x + math.cos(rad) * distance
        ny = self._y + math.sin(rad) * distance
        return self._move_to(nx, ny)

    def backward(self, distance: float) -> LineSegment | None:
        return self.forward(-distance)

    def goto(self, x: float, y: float) -> LineSegment | None:
        return self._move_to(float(x), float(y))

    def _move_to(self, nx: float, ny: float) -> LineSegment | None:
        seg = None
        if self._pen_down:
            seg = LineSegment(self._x, self._y, nx, ny, self._color, self._width)
        self._x, self._y = nx, ny
        return seg

    def right(self, degrees: float) -> None:
        self._heading += degrees

    def left(self, degrees: float) -> None:
        self._heading -= degrees

    def set_heading(self, degrees: float) -> None:
        self._heading = float(degrees)

    # Style

    def pen_up(self) -> None:
        self._pen_down = False

    def pen_down(self) -> None:
        self._pen_down = True

    def set_color(self, color: Color) -> None:
        self._color = color

    def set_width(self, width: float) -> None:
        self._width = float(width)

    # State stack

    def push_state(self) -> None:
        self._stack.append(self.snapshot())

    def pop_state(self) -> None:
        if not self._stack:
            return
        s = self._stack.pop()
        self._x, self._y, self._heading = s.x, s.y, s.heading
        self._pen_down, self._color, self._width = s.pen_down, s.color, s.width

    def snapshot(self) -> PoseSnapshot:
        return PoseSnapshot(
            x=self._x,
            y=self._y,
            heading=self._heading,
            pen_down=self._pen_down,
            color=self._color,
            width=self._width,
        )

    @property
    def position(self) -> Point:
        return (self._x, self._y)

    @property
    def heading(self) -> float:
        return self._heading

    @property
    def is_down(self) -> bool:
        return self._pen_down

    @property
    def color(self) -> Color:
        return self._color

    @property
    def width(self) -> float:
        return self._width

    @property
    def stack_depth(self) -> int:
        return len(self._stack)


# -------------------------
# Interpreter / stepper
# -------------------------


@dataclass(frozen=True)
class RunParams:
    step: float = 50.0
    angle: float = 25.0
    pen_width: float = 3.0
    pen_color: Color = "#008000"
    pen_down: bool = True
    origin: Point = (0.0, 0.0)
    # Every one of these symbols moves forward by `step`.
    movement_symbols: frozenset[str] = field(default_factory=lambda: frozenset("F"))


class TurtleInterpreter:
    """Drive a Turtle from program symbols.

    The interpreter owns its turtle, the segments drawn so far and a cursor
    into the loaded program. Stepping backward does not undo anything: the
    turtle is reset and the program prefix is replayed, which costs
    O(cursor) per call.

    Symbol table:
      movement symbols  forward(step), drawing when the pen is down
      +                 right(angle)
      -                 left(angle)
      [                 push state
      ]                 pop state (no-op on an empty stack)
      anything else     ignored
    """

    def __init__(self, params: RunParams, program: str = "") -> None:
        self.params = params
        self.turtle = Turtle()
        self.segments: list[LineSegment] = []
        self._origin = params.origin
        self._program = program
        self._cursor = 0
        self.reset()

    def reset(
        self, origin_x: float | None = None, origin_y: float | None = None
    ) -> None:
        """Put the turtle back at the origin with default style; cursor to 0.

        A given origin is remembered and used by later replays.
        """
        ox, oy = self._origin
        if origin_x is not None:
            ox = origin_x
        if origin_y is not None:
            oy = origin_y
        self._origin = (ox, oy)
        self.turtle.reset(
            ox,
            oy,
            color=self.params.pen_color,
            width=self.params.pen_width,
            pen_down=self.params.pen_down,
        )
        self.segments = []
        self._cursor = 0

    def step(self, symbol: str) -> LineSegment | None:
        """Apply one symbol. Returns the segment drawn, if any."""
        p = self.params
        t = self.turtle
        if symbol in p.movement_symbols:
            seg = t.forward(p.step)
            if seg is not None:
                self.segments.append(seg)
            return seg
        if symbol == "+":
            t.right(p.angle)
        elif symbol == "-":
            t.left(p.angle)
        elif symbol == "[":
            t.push_state()
        elif symbol == "]":
            t.pop_state()
        return None

    def run_prefix(self, program: str, length: int) -> list[LineSegment]:
        """Reset and interpret the first `length` symbols of program.

        The program becomes the loaded one and the cursor is left after the
        replayed prefix, so step_forward() continues from there.
        """
        self._program = program
        self.reset()
        length = max(0, min(length, len(program)))
        for sym in program[:length]:
            self.step(sym)
        self._cursor = length
        return list(self.segments)

    # Stepper

    def load(self, program: str) -> None:
        self._program = program
        self.reset()

    def clear(self) -> None:
        self.reset()

    def run_all(self) -> list[LineSegment]:
        return self.run_prefix(self._program, len(self._program))

    def step_forward(self) -> bool:
        if self._cursor >= len(self._program):
            return False
        self.step(self._program[self._cursor])
        self._cursor += 1
        return True

    def step_backward(self) -> bool:
        if self._cursor <= 0:
            return False
        self.run_prefix(self._program, self._cursor - 1)
        return True

    @property
    def program(self) -> str:
        return self._program

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def total(self) -> int:
        return len(self._program)

    @property
    def done(self) -> bool:
        return self._cursor >= len(self._program)

    @property
    def next_symbol(self) -> str | None:
        if self.done:
            return None
        return self._program[self._cursor]

    def progress_label(self) -> str:
        head = f"Step: {self._cursor}/{len(self._program)}"
        if self.done:
            return f"{head} (Done)"
        return f"{head} (Next: '{self.next_symbol}')"


# -------------------------
# Settings
# -------------------------


@dataclass(frozen=True)
class LSystemSettings:
    axiom: str = "F"
    rules: str = "F=F[+F]F[-F]F"
    variables: str = "F"
    constants: str = "+-[]"
    iterations: int = 3
    angle: float = 25.0
    step: float = 50.0
    pen_width: float = 3.0
    canvas_color: Color = "#ffa500"
    pen_color: Color = "#008000"


_SETTINGS_FIELDS = tuple(f.name for f in dataclasses.fields(LSystemSettings))


def parse_settings(obj: dict[str, Any]) -> LSystemSettings:
    obj = _as_dict(obj, "root")

    unknown = sorted(k for k in obj if k not in _SETTINGS_FIELDS)
    _require(not unknown, f"unknown settings field(s): {', '.join(unknown)}")

    d = LSystemSettings()

    iterations = _as_int(obj.get("iterations", d.iterations), "iterations")
    _require(iterations >= 0, "iterations must be >= 0")

    step = _as_float(obj.get("step", d.step), "step")
    _require(step > 0, "step must be > 0")

    pen_width = _as_float(obj.get("pen_width", d.pen_width), "pen_width")
    _require(pen_width > 0, "pen_width must be > 0")

    return LSystemSettings(
        axiom=_as_str(obj.get("axiom", d.axiom), "axiom"),
        rules=_as_str(obj.get("rules", d.rules), "rules"),
        variables=_as_str(obj.get("variables", d.variables), "variables"),
        constants=_as_str(obj.get("constants", d.constants), "constants"),
        iterations=iterations,
        angle=_as_float(obj.get("angle", d.angle), "angle"),
        step=step,
        pen_width=pen_width,
        canvas_color=_as_color(obj.get("canvas_color", d.canvas_color), "canvas_color"),
        pen_color=_as_color(obj.get("pen_color", d.pen_color), "pen_color"),
    )


def settings_to_dict(settings: LSystemSettings) -> dict[str, Any]:
    return dataclasses.asdict(settings)


def run_params_from_settings(
    settings: LSystemSettings,
    *,
    origin: Point = (0.0, 0.0),
    pen_down: bool = True,
    movement_symbols: str = "F",
) -> RunParams:
    _require(bool(movement_symbols), "movement symbols must not be empty")
    return RunParams(
        step=settings.step,
        angle=settings.angle,
        pen_width=settings.pen_width,
        pen_color=settings.pen_color,
        pen_down=pen_down,
        origin=(float(origin[0]), float(origin[1])),
        movement_symbols=frozenset(movement_symbols),
    )


def generate_program(
    settings: LSystemSettings, *, max_length: int | None = None
) -> str:
    parsed = parse_rules(settings.rules)
    return expand(
        settings.axiom, parsed.rules, settings.iterations, max_length=max_length
    )


def _ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            return cast(dict[str, Any], json.load(f))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
        except UnicodeDecodeError as e:
            raise ConfigError(f"{path} is not valid UTF-8: {e}") from e


def dump_json(obj: dict[str, Any], path: str) -> None:
    _ensure_parent_dir(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
        f.write("\n")


def load_settings(path: str) -> LSystemSettings:
    return parse_settings(load_json(path))


def save_settings(settings: LSystemSettings, path: str) -> None:
    dump_json(settings_to_dict(settings), path)


# -------------------------
# SVG writing
# -------------------------


def svg_color(color: Color) -> str:
    if isinstance(color, int):
        return f"#{color & 0xFFFFFF:06x}"
    return color


def compute_bounds(segments: list[LineSegment]) -> tuple[float, float, float, float]:
    _require(len(segments) > 0, "No drawable geometry produced.")
    xs = [v for s in segments for v in (s.start_x, s.end_x)]
    ys = [v for s in segments for v in (s.start_y, s.end_y)]
    return (min(xs), min(ys), max(xs), max(ys))


def chain_segments(
    segments: Iterable[LineSegment],
) -> list[tuple[list[Point], Color, float]]:
    """Join consecutive segments that continue each other with the same style."""
    chains: list[tuple[list[Point], Color, float]] = []
    for seg in segments:
        if chains:
            points, color, width = chains[-1]
            if points[-1] == seg.start and color == seg.color and width == seg.width:
                points.append(seg.end)
                continue
        chains.append(([seg.start, seg.end], seg.color, seg.width))
    return chains


def _fmt(x: float, precision: int) -> str:
    if not x:
        x = 0.0
    s = f"{x:.{precision}f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    if s == "-0":
        s = "0"
    return s or "0"


def write_svg(
    segments: list[LineSegment],
    *,
    out_path: str,
    margin: float,
    precision: int,
    background: Color | None,
    title: str | None = None,
) -> None:
    minx, miny, maxx, maxy = compute_bounds(segments)

    minx -= margin
    miny -= margin
    maxx += margin
    maxy += margin
    w = maxx - minx
    h = maxy - miny
    _require(
        w > 0 and h > 0,
        "Degenerate bounds after margin (width or height is zero). "
        "Use a margin > 0 to render collinear geometry.",
    )

    view_box = " ".join(_fmt(v, precision) for v in (minx, miny, w, h))

    lines: list[str] = []
    lines.append('<?xml version="1.0" encoding="UTF-8"?>')
    lines.append(
        '<svg xmlns="http://www.w3.org/2000/svg" version="1.1" '
        f'viewBox="{view_box}">'
    )

    if title:
        safe_title = (
            title.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        )
        lines.append(f"  <title>{safe_title}</title>")

    if background is not None and svg_color(background).lower() != "none":
        lines.append(
            f'  <rect x="{_fmt(minx, precision)}" y="{_fmt(miny, precision)}" '
            f'width="{_fmt(w, precision)}" height="{_fmt(h, precision)}" '
            f'fill="{svg_color(background)}" />'
        )

    for points, color, width in chain_segments(segments):
        pts = " ".join(f"{_fmt(x, precision)},{_fmt(y, precision)}" for x, y in points)
        lines.append(
            f'  <polyline points="{pts}" stroke="{svg_color(color)}" '
            f'stroke-width="{_fmt(width, precision)}" fill="none" '
            'stroke-linecap="round" stroke-linejoin="round" />'
        )

    lines.append("</svg>")

    _ensure_parent_dir(out_path)
    with open(out_path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))
        f.write("\n")


# -------------------------
# CLI / Help
# -------------------------

HELP_EPILOG = r"""
SETTINGS JSON SYNTAX

A settings file is a flat JSON object. Every field is optional; missing
fields take the defaults shown. Unknown fields are rejected.

  axiom: string (default "F")
      The generation-0 word. May be empty.

  rules: string (default "F=F[+F]F[-F]F")
      Production rules as "symbol=replacement" statements separated by
      newlines or ';'. The left-hand side must be exactly one character.
      Whitespace around the replacement is trimmed; whitespace inside it
      is kept. Malformed statements are skipped and reported by `validate`.
      Symbols without a rule rewrite to themselves.

  variables / constants: string (defaults "F" and "+-[]")
      Declared alphabet, informational only. `validate` warns about symbols
      that are declared as neither.

  iterations: integer >= 0 (default 3)

  angle: number, degrees (default 25)
      Turn used by '+' (clockwise) and '-' (counter-clockwise).

  step: number > 0 (default 50)
      Distance moved by each movement symbol.

  pen_width: number > 0 (default 3)

  canvas_color / pen_color: CSS color string or 32-bit ARGB integer
      (defaults "#ffa500" and "#008000").

TURTLE SYMBOLS

  F (or any --movement symbol)  move forward one step, drawing if the pen is down
  +                             turn right (clockwise) by angle
  -                             turn left by angle
  [                             save position, heading and pen style
  ]                             restore the last saved state (ignored if none)
  anything else                 ignored

Coordinates are screen-like: +X to the right, +Y downward, heading 0 along +X.

Example (Koch curve):

    {
      "axiom": "F",
      "rules": "F=F+F-F-F+F",
      "iterations": 3,
      "angle": 90,
      "step": 10
    }
"""

_DEFAULT_MAX_LENGTH = 1_000_000
_VALIDATE_SYMBOL_LIMIT = 10_000


def _add_run_options(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--origin",
        nargs=2,
        type=float,
        default=(0.0, 0.0),
        metavar=("X", "Y"),
        help="Turtle start position. Default: 0 0.",
    )
    p.add_argument(
        "--pen-up", action="store_true", help="Start with the pen lifted (no drawing)."
    )
    p.add_argument(
        "--movement",
        default="F",
        help="Symbols that move the turtle forward. Default: F.",
    )
    p.add_argument(
        "--steps",
        type=int,
        default=None,
        help="Only interpret the first N program symbols.",
    )
    p.add_argument(
        "--max-length",
        type=int,
        default=_DEFAULT_MAX_LENGTH,
        help=(
            "Refuse to expand programs longer than this many symbols "
            f"(0 disables the check). Default: {_DEFAULT_MAX_LENGTH}."
        ),
    )


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="lsystem_turtle.py",
        description="L-system expansion and step-wise turtle interpretation.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    pr = sub.add_parser(
        "render",
        help="Render a settings file to an SVG file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pr.add_argument("settings", help="Path to the settings JSON.")
    pr.add_argument("output", help="Path to write the SVG output.")
    _add_run_options(pr)
    pr.add_argument(
        "--margin", type=float, default=10.0, help="Margin around the drawing."
    )
    pr.add_argument(
        "--precision",
        type=int,
        default=3,
        choices=range(0, 11),
        metavar="0..10",
        help="Coordinate precision. Default: 3.",
    )

    pt = sub.add_parser(
        "trace",
        help="Step through the program and print the turtle pose after each symbol.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pt.add_argument("settings", help="Path to the settings JSON.")
    _add_run_options(pt)
    pt.add_argument(
        "--back",
        type=int,
        default=0,
        help="Step backward this many times after stepping forward.",
    )

    pe = sub.add_parser("expand", help="Print the expanded program string.")
    pe.add_argument("settings", help="Path to the settings JSON.")
    pe.add_argument(
        "--max-length",
        type=int,
        default=_DEFAULT_MAX_LENGTH,
        help="Refuse to expand programs longer than this (0 disables the check).",
    )

    pv = sub.add_parser(
        "validate",
        help="Validate a settings file and print a brief summary.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pv.add_argument("settings", help="Path to the settings JSON.")

    pd = sub.add_parser("defaults", help="Write the default settings to a JSON file.")
    pd.add_argument("output", help="Where to write the settings file.")

    return p


# -------------------------
# Commands
# -------------------------


def _max_length(value: int) -> int | None:
    return value if value > 0 else None


def _prepare(args: argparse.Namespace) -> tuple[LSystemSettings, TurtleInterpreter]:
    settings = load_settings(args.settings)
    program = generate_program(settings, max_length=_max_length(args.max_length))
    params = run_params_from_settings(
        settings,
        origin=(args.origin[0], args.origin[1]),
        pen_down=not args.pen_up,
        movement_symbols=args.movement,
    )
    interp = TurtleInterpreter(params)
    interp.load(program)
    return settings, interp


def cmd_render(args: argparse.Namespace) -> None:
    settings, interp = _prepare(args)
    if args.steps is None:
        segments = interp.run_all()
    else:
        segments = interp.run_prefix(interp.program, args.steps)

    write_svg(
        segments,
        out_path=args.output,
        margin=args.margin,
        precision=args.precision,
        background=settings.canvas_color,
        title=settings.axiom or None,
    )
    print(f"{interp.progress_label()}, {len(segments)} segments -> {args.output}")


def _pose_line(interp: TurtleInterpreter) -> str:
    t = interp.turtle
    x, y = t.position
    return (
        f"{interp.progress_label()}  x={_fmt(x, 3)} y={_fmt(y, 3)} "
        f"heading={_fmt(t.heading, 3)} depth={t.stack_depth} "
        f"segments={len(interp.segments)}"
    )


def cmd_trace(args: argparse.Namespace) -> None:
    _, interp = _prepare(args)
    limit = interp.total if args.steps is None else max(0, args.steps)

    print(_pose_line(interp))
    while interp.cursor < limit and interp.step_forward():
        print(_pose_line(interp))
    for _ in range(max(0, args.back)):
        if not interp.step_backward():
            break
        print(_pose_line(interp))


def cmd_expand(args: argparse.Namespace) -> None:
    settings = load_settings(args.settings)
    print(generate_program(settings, max_length=_max_length(args.max_length)))


def cmd_validate(settings_path: str) -> None:
    settings = load_settings(settings_path)
    parsed = parse_rules(settings.rules)

    print(f"axiom length: {len(settings.axiom)}")
    print(f"iterations: {settings.iterations}")
    print(f"rules: {len(parsed.rules)} ({format_rules(parsed.rules)})")
    print(
        "turtle: "
        f"angle={settings.angle} step={settings.step} pen_width={settings.pen_width}"
    )
    for statement in parsed.rejected:
        print(f"warning: skipped malformed rule statement {statement!r}")
    unknown = undeclared_symbols(
        settings.axiom, parsed.rules, settings.variables, settings.constants
    )
    if unknown:
        print(f"warning: undeclared symbols: {' '.join(unknown)}")

    total = expanded_length(
        settings.axiom,
        parsed.rules,
        settings.iterations,
        limit=_DEFAULT_MAX_LENGTH,
    )
    if total > _DEFAULT_MAX_LENGTH:
        print(f"program length: >{_DEFAULT_MAX_LENGTH}")
        print(
            f"warning: program exceeds {_DEFAULT_MAX_LENGTH} symbols; "
            "render and expand need a larger --max-length"
        )
        return
    print(f"program length: {total}")

    # Interpret a bounded prefix so that long programs stay cheap.
    program = expand(
        settings.axiom,
        parsed.rules,
        settings.iterations,
        max_length=_DEFAULT_MAX_LENGTH,
    )
    sample = program[:_VALIDATE_SYMBOL_LIMIT]
    interp = TurtleInterpreter(run_params_from_settings(settings))
    segments = interp.run_prefix(sample, len(sample))
    truncated = total > len(sample)
    seg_label = f"{len(segments)}+" if truncated else str(len(segments))
    print(f"segments (sampled): {seg_label}")
    if truncated:
        print(
            f"warning: program exceeds {_VALIDATE_SYMBOL_LIMIT} symbols; "
            "segment count is based on the first portion only"
        )
    if not segments:
        raise ConfigError("Settings produce no drawable geometry")


def cmd_defaults(output_path: str) -> None:
    save_settings(LSystemSettings(), output_path)


def main(argv: list[str] | None = None) -> int:
    ap = build_argparser()
    args = ap.parse_args(argv)

    try:
        if args.cmd == "render":
            cmd_render(args)
        elif args.cmd == "trace":
            cmd_trace(args)
        elif args.cmd == "expand":
            cmd_expand(args)
        elif args.cmd == "validate":
            cmd_validate(args.settings)
        elif args.cmd == "defaults":
            cmd_defaults(args.output)
        else:
            raise AssertionError("unreachable")
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
