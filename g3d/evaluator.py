"""
Expression evaluation engine for G3D programs.

Named functions from the IR are parsed with sympy, bound in dependency order
so later bodies inline earlier ones, and compiled to numpy callables with
lambdify. Every compiled callable accepts plain floats or numpy arrays.
"""

import keyword
import math
import warnings
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import sympy as sp
from sympy.core.function import AppliedUndef
from sympy.logic.boolalg import Boolean
from sympy.parsing.sympy_parser import convert_xor, parse_expr, standard_transformations
from sympy.printing.numpy import NumPyPrinter

from .errors import EvaluationError
from .ir import GraphIR, Label, NamedFunction
from .lexer import split_top_level, tokenize
from .parser import resolve_function_order

TRANSFORMATIONS = standard_transformations + (convert_xor,)

# Only what the parse transformations themselves need; everything else is
# looked up in the evaluator namespace, so names like E, N, S or gamma stay
# ordinary symbols.
PARSE_GLOBALS = {
    "Symbol": sp.Symbol,
    "Function": sp.Function,
    "Integer": sp.Integer,
    "Float": sp.Float,
    "Rational": sp.Rational,
    "Lambda": sp.Lambda,
    "factorial": sp.factorial,
}

# ============================================================================
# ALIAS LIBRARY
# ============================================================================

def _pow(base, exponent):
    return sp.Pow(base, exponent)


def _step(edge, x):
    return sp.Piecewise((1, x >= edge), (0, True))


def _clamp(x, lo, hi):
    return sp.Max(lo, sp.Min(x, hi))


def _mix(x, y, a):
    return x * (1 - a) + y * a


def _fract(x):
    return x - sp.floor(x)


def _round(x):
    # half-up, matching the usual plotting-calculator convention
    return sp.floor(x + sp.Rational(1, 2))


def _if(condition, when_true, when_false):
    condition = sp.sympify(condition)
    if not isinstance(condition, Boolean):
        condition = sp.Ne(condition, 0)
    return sp.Piecewise((when_true, condition), (when_false, True))


ALIAS_TABLE = {
    "SIN": sp.sin,
    "COS": sp.cos,
    "TAN": sp.tan,
    "ASIN": sp.asin,
    "ACOS": sp.acos,
    "ATAN": sp.atan,
    "ATAN2": sp.atan2,
    "ATN2": sp.atan2,
    "SQRT": sp.sqrt,
    "LOG": sp.log,
    "EXP": sp.exp,
    "POW": _pow,
    "ABS": sp.Abs,
    "PI": sp.pi,
    "MAX": sp.Max,
    "MIN": sp.Min,
    "FLOOR": sp.floor,
    "CEIL": sp.ceiling,
    "ROUND": _round,
    "STEP": _step,
    "CLAMP": _clamp,
    "MIX": _mix,
    "FRACT": _fract,
    "MOD": sp.Mod,
    "SIGN": sp.sign,
    "IF": _if,
}


def build_aliases() -> Dict[str, Any]:
    """Upper- and lower-case spellings of the built-in library"""
    aliases = dict(ALIAS_TABLE)
    for name, value in ALIAS_TABLE.items():
        if not keyword.iskeyword(name.lower()):
            aliases[name.lower()] = value
    aliases["E"] = sp.E
    aliases["e"] = sp.E
    return aliases


ALIASES = build_aliases()

# ============================================================================
# LABEL FORMATTING
# ============================================================================

def format_fixed(value: float) -> str:
    """STR(x): fixed notation with two decimals"""
    return f"{value:.2f}"


def format_precision(value: float) -> str:
    """TEXT(x): four significant digits"""
    text = f"{value:#.4g}"
    return text.rstrip(".") if "e" not in text else text


def format_number(value: float) -> str:
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    return repr(float(value))


LABEL_FORMATTERS = {"STR": format_fixed, "TEXT": format_precision}

# ============================================================================
# COMPILATION
# ============================================================================

class FieldPrinter(NumPyPrinter):
    """NumPy printer whose Max/Min broadcast scalars against arrays"""

    def _print_Max(self, expr):
        return self._pairwise("numpy.maximum", expr.args)

    def _print_Min(self, expr):
        return self._pairwise("numpy.minimum", expr.args)

    def _pairwise(self, fqn, args):
        func = self._module_format(fqn)
        code = self._print(args[0])
        for arg in args[1:]:
            code = f"{func}({code}, {self._print(arg)})"
        return code


def numpy_lambdify(symbols: Sequence[sp.Symbol], expr: sp.Basic) -> Callable:
    printer = FieldPrinter({
        'fully_qualified_modules': False,
        'inline': True,
        'allow_unknown_functions': True,
    })
    return sp.lambdify(list(symbols), expr, modules="numpy", printer=printer)


class Compiled(NamedTuple):
    text: str
    expr: sp.Basic
    args: Tuple[str, ...]
    extra: Tuple[str, ...]
    fn: Callable


def _finish(out, arrays: Sequence[np.ndarray]):
    """Broadcast a raw lambdify result to the input shape, real-valued"""
    out = np.asarray(out)
    if np.iscomplexobj(out):
        out = np.where(np.abs(out.imag) < 1e-12, out.real, np.nan)
    out = out.astype(float)
    shape = np.broadcast_shapes(*(a.shape for a in arrays)) if arrays else ()
    if out.shape != shape:
        out = np.broadcast_to(out, shape).copy()
    if out.ndim == 0:
        return float(out)
    return out


class CompiledExpression:
    """
    Numeric callable for one expression.

    Positional arguments are bound to `args`; any other free symbol is read
    from the owning evaluator's variables at call time (the animation
    parameter, for instance).
    """

    def __init__(self, owner: "ExpressionEvaluator", compiled: Compiled):
        self.owner = owner
        self.compiled = compiled

    @property
    def text(self) -> str:
        return self.compiled.text

    @property
    def args(self) -> Tuple[str, ...]:
        return self.compiled.args

    @property
    def free_variables(self) -> Tuple[str, ...]:
        return self.compiled.extra

    def __call__(self, *values, **overrides):
        compiled = self.compiled
        if len(values) != len(compiled.args):
            raise TypeError(f"'{compiled.text}' expects {len(compiled.args)} arguments, got {len(values)}")
        extra = self.owner.lookup(compiled.extra, compiled.text, overrides)
        arrays = [np.asarray(v, dtype=float) for v in values]
        extra = [np.asarray(v, dtype=float) for v in extra]
        with np.errstate(all="ignore"):
            out = compiled.fn(*arrays, *extra)
        return _finish(out, arrays + extra)

    def __repr__(self):
        return f"Compiled({', '.join(self.args)}) -> {self.text}"


class VectorFunction:
    """Component-wise callable for VEC_ and TENSOR_ definitions"""

    def __init__(self, name: str, components: Sequence[CompiledExpression], shape: Tuple[int, ...]):
        self.name = name
        self.components = list(components)
        self.shape = shape

    def __call__(self, *values, **overrides):
        results = [c(*values, **overrides) for c in self.components]
        if self.shape == (2, 2):
            return (tuple(results[0:2]), tuple(results[2:4]))
        return tuple(results)

# ============================================================================
# EVALUATOR
# ============================================================================

class ExpressionEvaluator:
    """
    Live evaluation context for one G3D program.

    Bindings are computed once at construction; variables are per instance.
    Use copy() to hand an independent context to another consumer.
    """

    def __init__(self, functions: Optional[Mapping[str, NamedFunction]] = None,
                 order: Optional[Sequence[str]] = None,
                 variables: Optional[Mapping[str, float]] = None):
        self.functions: Dict[str, NamedFunction] = dict(functions or {})
        self.order = list(order) if order is not None else resolve_function_order(self.functions)
        self.bindings: Dict[str, sp.Basic] = {}
        self.components: Dict[str, List[sp.Basic]] = {}
        self.unbound: Dict[str, str] = {}
        self._variables: Dict[str, float] = dict(variables or {})
        self._parsed: Dict[Tuple[str, Tuple[str, ...]], sp.Basic] = {}
        self._compiled: Dict[Tuple[str, Tuple[str, ...]], Compiled] = {}

        for name in self.order:
            self.bind(self.functions[name])

    @classmethod
    def from_ir(cls, ir: GraphIR, **variables) -> "ExpressionEvaluator":
        return cls(ir.functions, order=ir.function_order, variables=variables)

    def copy(self) -> "ExpressionEvaluator":
        """Same bindings and caches, independent variables"""
        clone = self.__class__.__new__(self.__class__)
        clone.__dict__.update(self.__dict__)
        clone._variables = dict(self._variables)
        return clone

    # ------------------------------------------------------------------
    # variables
    # ------------------------------------------------------------------

    def set(self, name: str, value: float):
        self._variables[name] = float(value)

    def get(self, name: str, default: Optional[float] = None) -> Optional[float]:
        return self._variables.get(name, default)

    def unset(self, name: str):
        self._variables.pop(name, None)

    @property
    def variables(self) -> Dict[str, float]:
        return dict(self._variables)

    def lookup(self, names: Sequence[str], text: str, overrides: Mapping[str, float]) -> List[float]:
        values = []
        for name in names:
            if name in overrides:
                values.append(overrides[name])
            elif name in self._variables:
                values.append(self._variables[name])
            else:
                raise EvaluationError(f"Undefined variable '{name}' in '{text}'")
        return values

    # ------------------------------------------------------------------
    # binding
    # ------------------------------------------------------------------

    def namespace(self, params: Sequence[str] = ()) -> Dict[str, Any]:
        names = dict(ALIASES)
        names.update(self.bindings)
        names.update({p: sp.Symbol(p) for p in params})
        return names

    def bind(self, fn: NamedFunction):
        """Parse one definition and add it to the namespace; failures are warned and skipped."""
        try:
            if fn.kind in ("vector", "tensor"):
                self.components[fn.name] = [self._parse(text, fn.params)
                                            for text in split_components(fn.body)]
            elif fn.params:
                body = self._parse(fn.body, fn.params)
                self.bindings[fn.name] = sp.Lambda(tuple(sp.Symbol(p) for p in fn.params), body)
            else:
                self.bindings[fn.name] = self._parse(fn.body, ())
        except EvaluationError as e:
            self.unbound[fn.name] = str(e)
            warnings.warn(f"Could not bind '{fn.signature}': {e}")

    def _parse(self, text: str, params: Sequence[str]) -> sp.Basic:
        key = (text, tuple(params))
        if key in self._parsed:
            return self._parsed[key]

        try:
            expr = parse_expr(text, local_dict=self.namespace(params),
                              global_dict=dict(PARSE_GLOBALS),
                              transformations=TRANSFORMATIONS)
        except Exception as e:
            raise EvaluationError(f"Malformed expression '{text}': {e}") from e

        if isinstance(expr, bool):
            expr = sp.true if expr else sp.false
        if isinstance(expr, sp.Lambda):
            raise EvaluationError(f"Function used without arguments in '{text}'")
        if not isinstance(expr, sp.Basic):
            raise EvaluationError(f"'{text}' is not a scalar expression")

        undefined = sorted({f.func.__name__ for f in expr.atoms(AppliedUndef)})
        if undefined:
            raise EvaluationError(f"Undefined function {', '.join(undefined)} in '{text}'")

        self._parsed[key] = expr
        return expr

    # ------------------------------------------------------------------
    # evaluation
    # ------------------------------------------------------------------

    def parse(self, text: str) -> sp.Basic:
        """sympy form of an expression in this context"""
        return self._parse(text, ())

    def compile(self, text: str, args: Sequence[str] = ("x", "y")) -> CompiledExpression:
        """
        Compile expression text into a numpy callable.

        Args:
            text: Expression in G3D syntax
            args: Names bound, in order, to the positional call arguments

        Returns:
            CompiledExpression accepting floats or arrays

        Raises:
            EvaluationError: if the text is malformed or calls unknown functions
        """
        key = (text, tuple(args))
        compiled = self._compiled.get(key)
        if compiled is None:
            expr = self._parse(text, args)
            compiled = self._lambdify(text, expr, args)
            self._compiled[key] = compiled
        return CompiledExpression(self, compiled)

    def _lambdify(self, text: str, expr: sp.Basic, args: Sequence[str]) -> Compiled:
        arg_symbols = [sp.Symbol(a) for a in args]
        extra = sorted((s for s in expr.free_symbols if s.name not in args), key=lambda s: s.name)
        fn = numpy_lambdify(arg_symbols + extra, expr)
        return Compiled(text, expr, tuple(args), tuple(s.name for s in extra), fn)

    def evaluate(self, text: str, **values) -> Any:
        """
        Evaluate expression text against the current variables.

        Keyword values override variables for this call only. Returns a
        float for scalar inputs and an array when any value is an array.
        """
        names = tuple(sorted(values))
        return self.compile(text, names)(*(values[n] for n in names))

    def scalar_field(self, expr: str) -> CompiledExpression:
        """phi(x, y) for a surface expression"""
        return self.compile(expr, ("x", "y"))

    def _require(self, name: str, kinds: Tuple[str, ...]) -> NamedFunction:
        fn = self.functions.get(name)
        if fn is None:
            raise EvaluationError(f"Function '{name}' is not defined")
        if fn.kind not in kinds:
            raise EvaluationError(f"'{name}' is a {fn.kind} definition, expected {' or '.join(kinds)}")
        if name in self.unbound:
            raise EvaluationError(f"Function '{name}' is not bound: {self.unbound[name]}")
        return fn

    def function(self, name: str) -> CompiledExpression:
        """Callable for a scalar function or constant definition"""
        fn = self._require(name, ("scalar", "constant"))
        binding = self.bindings[name]
        expr = binding.expr if isinstance(binding, sp.Lambda) else binding
        key = (f"<{name}>", fn.params)
        if key not in self._compiled:
            self._compiled[key] = self._lambdify(fn.body, expr, fn.params)
        return CompiledExpression(self, self._compiled[key])

    def _component_function(self, name: str, kind: str, shape: Tuple[int, ...]) -> VectorFunction:
        fn = self._require(name, (kind,))
        compiled = []
        for i, expr in enumerate(self.components[name]):
            key = (f"<{name}[{i}]>", fn.params)
            if key not in self._compiled:
                self._compiled[key] = self._lambdify(f"{name}[{i}]", expr, fn.params)
            compiled.append(CompiledExpression(self, self._compiled[key]))
        return VectorFunction(name, compiled, shape)

    def vector_function(self, name: str) -> VectorFunction:
        """(fx, fy, fz) callable for a VEC_ definition"""
        return self._component_function(name, "vector", (3,))

    def tensor_function(self, name: str) -> VectorFunction:
        """((a, b), (c, d)) callable for a TENSOR_ definition"""
        return self._component_function(name, "tensor", (2, 2))

    # ------------------------------------------------------------------
    # labels
    # ------------------------------------------------------------------

    def evaluate_label(self, label: Label, **values) -> Tuple[str, Tuple[float, float, float]]:
        """
        Text and position of a label for the current variables.

        Text that cannot be evaluated falls back to the raw expression; a
        position coordinate that cannot be evaluated becomes 0.
        """
        try:
            text = self.label_text(label.text_expr, **values)
        except (EvaluationError, TypeError, ValueError):
            text = label.text_expr

        position = []
        for expr in label.position_expr:
            try:
                value = float(self.evaluate(expr, **values))
            except (EvaluationError, TypeError, ValueError):
                value = 0.0
            position.append(value if math.isfinite(value) else 0.0)
        return text, tuple(position)

    def label_text(self, text_expr: str, **values) -> str:
        """Left fold over top-level '+' terms mixing strings and numbers"""
        result: Any = None
        for term in split_top_level(tokenize(text_expr), separator="PLUS"):
            if not term:
                continue
            value = self._label_term(text_expr, term, values)
            if result is None:
                result = value
            elif isinstance(result, str) or isinstance(value, str):
                result = _as_text(result) + _as_text(value)
            else:
                result = result + value
        if result is None:
            return ""
        return _as_text(result)

    def _label_term(self, text_expr, term, values):
        if len(term) == 1 and term[0].type == "STRING":
            return term[0].value[1:-1]

        head = term[0].value.upper() if term[0].type == "IDENT" else ""
        source = text_expr[term[0].position:term[-1].end]
        if head in LABEL_FORMATTERS and len(term) > 3 and term[1].type == "LPAREN" and term[-1].type == "RPAREN":
            inner = text_expr[term[2].position:term[-2].end]
            return LABEL_FORMATTERS[head](float(self.evaluate(inner, **values)))
        return float(self.evaluate(source, **values))


def _as_text(value) -> str:
    if isinstance(value, str):
        return value
    return format_number(value)


def split_components(body: str) -> List[str]:
    """Component texts of a `[a, b, c]` or `[[a, b], [c, d]]` body, row-major"""
    tokens = tokenize(body)
    groups = split_top_level(tokens[1:-1])
    texts = []
    for group in groups:
        if group and group[0].type == "LBRACKET":
            for cell in split_top_level(group[1:-1]):
                texts.append(body[cell[0].position:cell[-1].end])
        else:
            texts.append(body[group[0].position:group[-1].end])
    return texts
