"""
G3D parser and validator.

Turns raw G3D source text into a validated GraphIR, or raises a
G3DSyntaxError carrying the 1-based source line and the cause. There is no
partial recovery: the first violation ends the parse attempt.

Pipeline:
    source -> preprocess() -> logical lines
           -> tokenize + keyword dispatch -> typed statement nodes
           -> analyze_statements() -> GraphIR
"""

import math
import re
import warnings
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import CircularDefinitionError, EvaluationError, G3DSyntaxError
from .ir import (CONSTANT_PREFIXES, DEFAULT_RANGE, DEFAULT_VECTOR_GRID, GLYPH_KINDS,
                 MAX_GRID_SIZE, MAX_PARTICLES, VALID_COLOR_MAPS, Animation, Contour,
                 GraphIR, Label, NamedFunction, ParticleConfig, Range, SurfacePlot,
                 TensorPlot, VectorPlot)
from .lexer import (Token, bracket_depth_ok, find_top_level, identifiers,
                    split_top_level, tokenize)

STATEMENT_KEYWORDS = ("SET", "COLOR", "PLOT3D", "PLOT_VECFIELD", "PLOT_TENSOR",
                      "ANIMATE", "PARTICLES", "CONTOUR", "LABEL")

_keyword_line = re.compile(r"^(%s)(\s|$)" % "|".join(STATEMENT_KEYWORDS), re.IGNORECASE)
_def_line = re.compile(r"^DEF(\s|$)", re.IGNORECASE)

# ============================================================================
# PREPROCESSING
# ============================================================================

@dataclass
class LogicalLine:
    """A statement after comment stripping and continuation joining"""
    text: str
    line: int

    def __repr__(self):
        return f"L{self.line}: {self.text}"


def strip_comment(raw: str) -> str:
    """Drop everything from the first '#' that is not inside a quoted string."""
    quote = None
    for i, ch in enumerate(raw):
        if quote:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == "#":
            return raw[:i]
    return raw


def preprocess(source: str) -> List[LogicalLine]:
    """
    Segment source text into logical lines.

    Comments are stripped, lines ending in a backslash are joined with the
    next line, and a DEF statement absorbs the following lines until a line
    starts with a statement keyword (wrapped multi-line definitions).

    Args:
        source: Raw G3D program text

    Returns:
        Logical lines tagged with the physical line each one started on
    """
    joined: List[LogicalLine] = []
    buffer = ""
    buffer_line = 0

    for number, raw in enumerate(source.split("\n"), start=1):
        trimmed = strip_comment(raw).strip()
        if not trimmed:
            continue
        if not buffer:
            buffer_line = number
        buffer += (" " if buffer else "") + trimmed
        if buffer.endswith("\\"):
            buffer = buffer[:-1].rstrip()
        else:
            joined.append(LogicalLine(buffer, buffer_line))
            buffer = ""
    if buffer:
        joined.append(LogicalLine(buffer, buffer_line))

    merged: List[LogicalLine] = []
    pending_def: Optional[LogicalLine] = None
    for logical in joined:
        if _def_line.match(logical.text):
            if pending_def:
                merged.append(pending_def)
            pending_def = LogicalLine(logical.text, logical.line)
        elif pending_def and not _keyword_line.match(logical.text):
            # No separator: keeps "[" and "[" from separate lines a valid matrix
            pending_def.text += logical.text
        else:
            if pending_def:
                merged.append(pending_def)
                pending_def = None
            merged.append(logical)
    if pending_def:
        merged.append(pending_def)

    return [l for l in merged if l.text]

# ============================================================================
# STATEMENT NODES
# ============================================================================

@dataclass
class Statement:
    line: int


@dataclass
class RangeStmt(Statement):
    axis: str
    min: float
    max: float


@dataclass
class ColorMapStmt(Statement):
    name: str


@dataclass
class ParticlesStmt(Statement):
    count: int


@dataclass
class ContourStmt(Statement):
    levels: List[float]


@dataclass
class LabelStmt(Statement):
    text_expr: str
    position_expr: Tuple[str, str, str]


@dataclass
class DefineStmt(Statement):
    name: str
    params: Tuple[str, ...]
    body: str


@dataclass
class SurfaceStmt(Statement):
    expr: str


@dataclass
class VectorFieldStmt(Statement):
    fn_name: str
    grid_size: int = DEFAULT_VECTOR_GRID


@dataclass
class TensorFieldStmt(Statement):
    fn_name: str
    glyph_kind: str = "ELLIPSOID"


@dataclass
class AnimateStmt(Statement):
    parameter: str
    start_expr: str
    stop_expr: str
    step_expr: str

# ============================================================================
# DEPENDENCY ORDERING
# ============================================================================

def function_dependencies(functions: Mapping[str, NamedFunction]) -> Dict[str, List[str]]:
    """Names of other named functions each body refers to (parameters shadow them)."""
    deps = {}
    for name, fn in functions.items():
        deps[name] = [ident for ident in identifiers(fn.body)
                      if ident in functions and ident not in fn.params]
    return deps


def resolve_function_order(functions: Mapping[str, NamedFunction]) -> List[str]:
    """
    Order named functions so every definition follows the ones it uses.

    Ties keep definition order, so the result is deterministic.

    Raises:
        CircularDefinitionError: if definitions reference each other in a
            cycle (a self reference counts)
    """
    deps = function_dependencies(functions)
    order: List[str] = []
    placed = set()
    pending = list(functions)

    while pending:
        ready = [name for name in pending if all(d in placed for d in deps[name])]
        if not ready:
            raise CircularDefinitionError(_find_cycle(pending, deps))
        for name in ready:
            order.append(name)
            placed.add(name)
        pending = [name for name in pending if name not in placed]

    return order


def _find_cycle(pending: List[str], deps: Dict[str, List[str]]) -> List[str]:
    # Every pending node has at least one pending dependency, so this walk
    # must revisit a node.
    pending_set = set(pending)
    path: List[str] = []
    seen: Dict[str, int] = {}
    node = pending[0]
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = next(d for d in deps[node] if d in pending_set)
    return path[seen[node]:] + [node]

# ============================================================================
# PARSER
# ============================================================================

class G3DParser:
    """
    Statement-level parser with a keyword dispatch table.

    Each logical line is tokenized and handed to the handler registered for
    its leading keyword; handlers return typed statement nodes. The nodes are
    then validated against each other and folded into a GraphIR.
    """

    def __init__(self, source: str):
        self.source = source
        self.lines = preprocess(source)
        self.text = ""
        self.line = 0
        self.tokens: List[Token] = []
        self.pos = 0

        self.handlers: Dict[str, Callable[[], Statement]] = {
            "SET": self.parse_set,
            "COLOR": self.parse_color_map,
            "PARTICLES": self.parse_particles,
            "CONTOUR": self.parse_contour,
            "LABEL": self.parse_label,
            "DEF": self.parse_define,
            "PLOT3D": self.parse_plot3d,
            "PLOT_VECFIELD": self.parse_vector_field,
            "PLOT_TENSOR": self.parse_tensor_field,
            "ANIMATE": self.parse_animate,
        }

    # ------------------------------------------------------------------
    # token helpers
    # ------------------------------------------------------------------

    def error(self, cause: str) -> G3DSyntaxError:
        return G3DSyntaxError(self.line, cause, self.text)

    def peek(self, offset: int = 0) -> Optional[Token]:
        pos = self.pos + offset
        if pos < len(self.tokens):
            return self.tokens[pos]
        return None

    def match(self, *expected_types: str) -> Optional[Token]:
        token = self.peek()
        if token and token.type in expected_types:
            self.pos += 1
            return token
        return None

    def expect(self, expected_type: str, what: Optional[str] = None) -> Token:
        token = self.match(expected_type)
        if not token:
            current = self.peek()
            wanted = what or expected_type
            if current:
                raise self.error(f"Expected {wanted} but got '{current.value}'")
            raise self.error(f"Expected {wanted} but reached end of statement")
        return token

    def expect_keyword(self, *words: str) -> Token:
        token = self.peek()
        if token and token.is_keyword(*words):
            self.pos += 1
            return token
        got = f"'{token.value}'" if token else "end of statement"
        raise self.error(f"Expected {' or '.join(words)} but got {got}")

    def expect_end(self):
        token = self.peek()
        if token:
            raise self.error(f"Unexpected '{token.value}' after statement")

    def rest(self) -> List[Token]:
        remaining = self.tokens[self.pos:]
        self.pos = len(self.tokens)
        return remaining

    def slice_text(self, tokens: Sequence[Token]) -> str:
        """Raw source text spanned by a token run"""
        if not tokens:
            return ""
        return self.text[tokens[0].position:tokens[-1].end].strip()

    def number(self, tokens: Sequence[Token], context: str) -> float:
        literal = "".join(t.value for t in tokens)
        try:
            value = float(literal)
        except ValueError:
            raise self.error(f"Invalid number '{literal}' in {context} statement.")
        if not tokens or not math.isfinite(value):
            raise self.error(f"Invalid number '{literal}' in {context} statement.")
        return value

    # ------------------------------------------------------------------
    # entry points
    # ------------------------------------------------------------------

    def parse(self) -> GraphIR:
        """Parse and validate the whole program"""
        statements = [self.parse_statement(logical) for logical in self.lines]
        return self.analyze_statements(statements)

    def parse_statement(self, logical: LogicalLine) -> Statement:
        """Dispatch one logical line on its leading keyword"""
        self.text = logical.text
        self.line = logical.line
        self.tokens = tokenize(logical.text)
        self.pos = 0

        head = self.peek()
        handler = self.handlers.get(head.value.upper()) if head and head.type == "IDENT" else None
        if handler is None:
            raise self.error(f'Unknown or invalid statement: "{logical.text}"')
        return handler()

    # ------------------------------------------------------------------
    # statement handlers
    # ------------------------------------------------------------------

    def parse_set(self) -> RangeStmt:
        """SET RANGE <X|Y|Z> <min> TO <max>"""
        self.expect_keyword("SET")
        self.expect_keyword("RANGE")
        axis = self.expect("IDENT", "axis X, Y or Z")
        if axis.value.upper() not in ("X", "Y", "Z"):
            raise self.error(f"Unknown axis '{axis.value}' in RANGE statement.")

        to_index = find_top_level(self.tokens, "TO", self.pos)
        if to_index is None:
            raise self.error("Expected TO in RANGE statement.")
        low = self.number(self.tokens[self.pos:to_index], "RANGE")
        self.pos = to_index + 1
        high = self.number(self.rest(), "RANGE")

        if low >= high:
            raise self.error("Min value must be less than max value in RANGE statement.")
        return RangeStmt(self.line, axis.value.lower(), low, high)

    def parse_color_map(self) -> ColorMapStmt:
        """COLOR MAP <name>"""
        self.expect_keyword("COLOR")
        self.expect_keyword("MAP")
        name = self.expect("IDENT", "color map name").value.lower()
        self.expect_end()
        if name not in VALID_COLOR_MAPS:
            raise self.error(f'Invalid color map "{name}". Valid maps are: {", ".join(VALID_COLOR_MAPS)}')
        return ColorMapStmt(self.line, name)

    def parse_particles(self) -> ParticlesStmt:
        """PARTICLES <count>"""
        self.expect_keyword("PARTICLES")
        literal = "".join(t.value for t in self.rest())
        if not literal.isdigit() or int(literal) <= 0:
            raise self.error("Invalid particle count. Must be a positive integer.")
        count = int(literal)
        if count > MAX_PARTICLES:
            raise self.error(f"Particle count exceeds the maximum limit of {MAX_PARTICLES}.")
        return ParticlesStmt(self.line, count)

    def parse_contour(self) -> ContourStmt:
        """CONTOUR LEVELS <n1>, <n2>, ..."""
        self.expect_keyword("CONTOUR")
        self.expect_keyword("LEVELS")
        groups = [g for g in split_top_level(self.rest()) if g]
        if not groups:
            raise self.error("No valid numbers found in CONTOUR LEVELS statement.")
        levels = [self.number(group, "CONTOUR LEVELS") for group in groups]
        return ContourStmt(self.line, levels)

    def parse_label(self) -> LabelStmt:
        """LABEL <textExpr> AT <xExpr>, <yExpr>, <zExpr>"""
        self.expect_keyword("LABEL")
        at_index = None
        search = self.pos
        while True:
            found = find_top_level(self.tokens, "AT", search)
            if found is None:
                break
            at_index, search = found, found + 1
        if at_index is None or at_index == self.pos:
            raise self.error("LABEL statement must have the form LABEL <text> AT <x>, <y>, <z>.")

        text_expr = self.slice_text(self.tokens[self.pos:at_index])
        self.pos = at_index + 1
        parts = split_top_level(self.rest())
        if len(parts) != 3 or not all(parts):
            raise self.error("LABEL position must have exactly 3 comma-separated expressions.")
        x_expr, y_expr, z_expr = (self.slice_text(p) for p in parts)
        return LabelStmt(self.line, text_expr, (x_expr, y_expr, z_expr))

    def parse_define(self) -> DefineStmt:
        """
        DEF <ConstName> = <expr>
        DEF <FnName>(<params>) = <expr>
        DEF <VecName>(<params>) = [<ex>, <ey>, <ez>]
        DEF <TensorName>(<params>) = [[<a>, <b>], [<c>, <d>]]
        """
        self.expect_keyword("DEF")
        name = self.expect("IDENT", "definition name").value
        upper = name.upper()

        params: Tuple[str, ...] = ()
        has_params = False
        if self.match("LPAREN"):
            has_params = True
            names = []
            if not self.match("RPAREN"):
                names.append(self.expect("IDENT", "parameter name").value)
                while self.match("COMMA"):
                    names.append(self.expect("IDENT", "parameter name").value)
                self.expect("RPAREN", "')'")
            duplicates = sorted({p for p in names if names.count(p) > 1})
            if duplicates:
                raise self.error(f"Duplicate parameter '{duplicates[0]}' in definition of '{name}'.")
            params = tuple(names)

        self.expect("EQUALS", "'='")
        body_tokens = self.rest()
        body = self.slice_text(body_tokens)

        if not has_params:
            if not upper.startswith(CONSTANT_PREFIXES):
                raise self.error("Constant definition name must start with FN, VEC_, or TENSOR_.")
            if not body:
                raise self.error("Constant definition cannot be empty.")
        elif not upper.startswith(CONSTANT_PREFIXES):
            raise self.error(f"Function name '{name}' must start with FN, VEC_, or TENSOR_.")
        elif not body:
            raise self.error("Function body cannot be empty.")

        if upper.startswith("VEC_"):
            self.check_vector_body(body_tokens)
        elif upper.startswith("TENSOR_"):
            self.check_tensor_body(body_tokens)
        elif not bracket_depth_ok(body_tokens):
            raise self.error(f"Unbalanced brackets in definition of '{name}'.")

        return DefineStmt(self.line, name, params, body)

    def check_vector_body(self, tokens: Sequence[Token]):
        if not _is_bracketed(tokens):
            raise self.error("Vector function body must be enclosed in square brackets [].")
        components = split_top_level(tokens[1:-1])
        if len(components) != 3 or not all(components):
            raise self.error(f"Vector function body must have exactly 3 components, got {len(components)}.")
        if any(_is_bracketed(c) for c in components):
            raise self.error("Vector function components must be scalar expressions.")

    def check_tensor_body(self, tokens: Sequence[Token]):
        if not (_is_bracketed(tokens) and len(tokens) > 2 and tokens[1].type == "LBRACKET"):
            raise self.error("Tensor function body must be a matrix enclosed in double square brackets [[]].")
        rows = split_top_level(tokens[1:-1])
        if len(rows) != 2 or not all(_is_bracketed(row) for row in rows):
            raise self.error("Tensor function body must be a 2x2 matrix [[a, b], [c, d]].")
        for row in rows:
            cells = split_top_level(row[1:-1])
            if len(cells) != 2 or not all(cells) or any(_is_bracketed(c) for c in cells):
                raise self.error("Tensor function body must be a 2x2 matrix [[a, b], [c, d]].")

    def parse_plot3d(self) -> SurfaceStmt:
        """PLOT3D <expr>"""
        self.expect_keyword("PLOT3D")
        expr = self.slice_text(self.rest())
        if not expr:
            raise self.error("PLOT3D expression cannot be empty.")
        return SurfaceStmt(self.line, expr)

    def parse_vector_field(self) -> VectorFieldStmt:
        """PLOT_VECFIELD <VecName> [GRID <n>]"""
        self.expect_keyword("PLOT_VECFIELD")
        name = self.expect("IDENT", "vector function name").value
        if not name.upper().startswith("VEC_"):
            raise self.error(f"PLOT_VECFIELD expects a VEC_ function, got '{name}'.")

        grid_size = DEFAULT_VECTOR_GRID
        if self.peek() and self.peek().is_keyword("GRID"):
            self.pos += 1
            literal = "".join(t.value for t in self.rest())
            if not literal.isdigit() or not 2 <= int(literal) <= MAX_GRID_SIZE:
                raise self.error(f"Vector field grid size must be an integer between 2 and {MAX_GRID_SIZE}.")
            grid_size = int(literal)
        self.expect_end()
        return VectorFieldStmt(self.line, name, grid_size)

    def parse_tensor_field(self) -> TensorFieldStmt:
        """PLOT_TENSOR <TensorName> AS GLYPH '<glyph>'"""
        self.expect_keyword("PLOT_TENSOR")
        name = self.expect("IDENT", "tensor function name").value
        if not name.upper().startswith("TENSOR_"):
            raise self.error(f"PLOT_TENSOR expects a TENSOR_ function, got '{name}'.")
        self.expect_keyword("AS")
        self.expect_keyword("GLYPH")
        glyph = self.expect("STRING", "quoted glyph kind").value[1:-1].strip().upper()
        self.expect_end()
        if glyph not in GLYPH_KINDS:
            raise self.error(f"Unknown glyph kind '{glyph}'. Valid kinds are: {', '.join(GLYPH_KINDS)}")
        return TensorFieldStmt(self.line, name, glyph)

    def parse_animate(self) -> AnimateStmt:
        """ANIMATE <param> FROM <expr> TO <expr> STEP <expr>"""
        self.expect_keyword("ANIMATE")
        parameter = self.expect("IDENT", "animation parameter").value

        from_index = find_top_level(self.tokens, "FROM", self.pos)
        to_index = find_top_level(self.tokens, "TO", (from_index or 0) + 1)
        step_index = find_top_level(self.tokens, "STEP", (to_index or 0) + 1)
        if from_index != self.pos or to_index is None or step_index is None:
            raise self.error("ANIMATE statement must have the form ANIMATE <param> FROM <a> TO <b> STEP <s>.")

        start = self.slice_text(self.tokens[from_index + 1:to_index])
        stop = self.slice_text(self.tokens[to_index + 1:step_index])
        step = self.slice_text(self.tokens[step_index + 1:])
        if not (start and stop and step):
            raise self.error("ANIMATE bounds and step cannot be empty.")
        self.pos = len(self.tokens)
        return AnimateStmt(self.line, parameter, start, stop, step)

    # ------------------------------------------------------------------
    # semantic analysis
    # ------------------------------------------------------------------

    def analyze_statements(self, statements: List[Statement]) -> GraphIR:
        """
        Cross-statement validation and IR construction.

        Args:
            statements: Statement nodes in source order

        Returns:
            The validated GraphIR
        """
        ranges = {"x": DEFAULT_RANGE, "y": DEFAULT_RANGE, "z": DEFAULT_RANGE}
        functions: Dict[str, NamedFunction] = {}
        plots: List[Tuple[int, object]] = []
        labels: List[Label] = []
        color_map: Optional[ColorMapStmt] = None
        particles: Optional[ParticlesStmt] = None
        contour: Optional[ContourStmt] = None
        animate: Optional[AnimateStmt] = None

        def duplicate(existing: Optional[Statement], stmt: Statement, what: str):
            if existing is not None:
                raise G3DSyntaxError(stmt.line, f"Multiple {what} statements found. Only one is allowed.")

        for stmt in statements:
            if isinstance(stmt, RangeStmt):
                ranges[stmt.axis] = Range(stmt.min, stmt.max)
            elif isinstance(stmt, ColorMapStmt):
                duplicate(color_map, stmt, "COLOR MAP")
                color_map = stmt
            elif isinstance(stmt, ParticlesStmt):
                duplicate(particles, stmt, "PARTICLES")
                particles = stmt
            elif isinstance(stmt, ContourStmt):
                duplicate(contour, stmt, "CONTOUR")
                contour = stmt
            elif isinstance(stmt, AnimateStmt):
                duplicate(animate, stmt, "ANIMATE")
                animate = stmt
            elif isinstance(stmt, LabelStmt):
                labels.append(Label(stmt.text_expr, stmt.position_expr))
            elif isinstance(stmt, DefineStmt):
                if stmt.name in functions:
                    raise G3DSyntaxError(stmt.line, f"Constant or function '{stmt.name}' is already defined.")
                functions[stmt.name] = NamedFunction(stmt.name, stmt.params, stmt.body, stmt.line)
            elif isinstance(stmt, SurfaceStmt):
                plots.append((stmt.line, SurfacePlot(stmt.expr, stmt.expr)))
            elif isinstance(stmt, VectorFieldStmt):
                plots.append((stmt.line, VectorPlot(stmt.fn_name, stmt.grid_size)))
            elif isinstance(stmt, TensorFieldStmt):
                plots.append((stmt.line, TensorPlot(stmt.fn_name, stmt.glyph_kind)))

        try:
            order = resolve_function_order(functions)
        except CircularDefinitionError as e:
            raise G3DSyntaxError(functions[e.cycle[0]].line, str(e))

        for line, plot in plots:
            if isinstance(plot, (VectorPlot, TensorPlot)):
                kind = "vector" if isinstance(plot, VectorPlot) else "tensor"
                fn = functions.get(plot.fn_name)
                if fn is None or fn.kind != kind:
                    raise G3DSyntaxError(line, f"{kind.title()} function '{plot.fn_name}' is not defined.")

        final_plots = [self.resolve_surface(plot, functions) if isinstance(plot, SurfacePlot) else plot
                       for _, plot in plots]
        if not any(isinstance(p, SurfacePlot) for p in final_plots):
            if final_plots:
                # Downstream consumers always need a potential to sample against
                final_plots.insert(0, SurfacePlot("0", "", implicit=True))
            else:
                last_line = max(1, len(self.source.split("\n")))
                raise G3DSyntaxError(last_line, "No PLOT3D, PLOT_VECFIELD, or PLOT_TENSOR statement found. Nothing to render.")

        animation = self.fold_animation(animate, functions, order) if animate else None

        return GraphIR(
            ranges=ranges,
            functions=functions,
            plots=tuple(final_plots),
            labels=tuple(labels),
            animation=animation,
            contours=Contour(tuple(sorted(set(contour.levels)))) if contour else None,
            particles=ParticleConfig(particles.count) if particles else None,
            color_map=color_map.name if color_map else "default",
            function_order=tuple(order),
        )

    def resolve_surface(self, plot: SurfacePlot, functions: Mapping[str, NamedFunction]) -> SurfacePlot:
        """Inline `FN(params)` when the call passes the function's own parameter names."""
        tokens = tokenize(plot.source)
        if len(tokens) < 3 or tokens[0].type != "IDENT" or tokens[1].type != "LPAREN" or tokens[-1].type != "RPAREN":
            return plot
        fn = functions.get(tokens[0].value)
        if fn is None or fn.kind != "scalar":
            return plot
        args = split_top_level(tokens[2:-1])
        if [len(a) == 1 and a[0].type == "IDENT" for a in args].count(False):
            return plot
        if tuple(a[0].value for a in args) != fn.params:
            return plot
        return SurfacePlot(fn.body, plot.source)

    def fold_animation(self, stmt: AnimateStmt, functions: Mapping[str, NamedFunction],
                       order: List[str]) -> Animation:
        values = [self.fold_constant(expr, stmt, functions, order)
                  for expr in (stmt.start_expr, stmt.stop_expr, stmt.step_expr)]
        start, stop, step = values
        if step <= 0:
            raise G3DSyntaxError(stmt.line, "STEP value must be positive.")
        return Animation(stmt.parameter, start, stop, step)

    def fold_constant(self, expr: str, stmt: AnimateStmt, functions: Mapping[str, NamedFunction],
                      order: List[str]) -> float:
        """Evaluate a constant expression, e.g. `2*PI` or a user constant"""
        try:
            value = float(expr)
        except ValueError:
            from .evaluator import ExpressionEvaluator

            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                evaluator = ExpressionEvaluator(functions, order=order)
                try:
                    value = float(evaluator.evaluate(expr))
                except (EvaluationError, TypeError, ValueError):
                    raise G3DSyntaxError(stmt.line, f"Invalid number in ANIMATE statement: '{expr}' is not a constant.")
        if not math.isfinite(value):
            raise G3DSyntaxError(stmt.line, f"Invalid number in ANIMATE statement: '{expr}' is not finite.")
        return value


def _is_bracketed(tokens: Sequence[Token]) -> bool:
    """True when the run is exactly one [...] group"""
    if len(tokens) < 2 or tokens[0].type != "LBRACKET" or tokens[-1].type != "RBRACKET":
        return False
    if not bracket_depth_ok(tokens):
        return False
    depth = 0
    for i, tok in enumerate(tokens):
        if tok.type in ("LPAREN", "LBRACKET"):
            depth += 1
        elif tok.type in ("RPAREN", "RBRACKET"):
            depth -= 1
            if depth == 0 and i != len(tokens) - 1:
                return False
    return True


def parse_g3d(source: str) -> GraphIR:
    """
    Parse G3D source text into a validated GraphIR.

    Raises:
        G3DSyntaxError: on the first invalid statement
    """
    return G3DParser(source).parse()
