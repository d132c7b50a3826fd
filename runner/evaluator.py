"""
Restricted evaluation of submitted program text.

The program body is compiled as the body of a function whose parameters are
the names of the capability table, then called with that table. Nothing else
is reachable: builtins are an allow-list and imports go through a guard.
"""

from __future__ import annotations

import ast
import builtins
import types
from typing import Any, Callable, Dict, Iterable, Optional

PROGRAM_FUNC_NAME = "_submitted_program"

ALLOWED_IMPORTS = {
    "math",
    "statistics",
    "re",
    "datetime",
    "json",
    "decimal",
    "collections",
    "itertools",
}
BLOCKED_MODULES = {
    "os",
    "sys",
    "subprocess",
    "socket",
    "pathlib",
    "shutil",
    "ctypes",
    "importlib",
    "builtins",
    "io",
    "signal",
    "multiprocessing",
    "threading",
}
BLOCKED_CALLS = {
    "open",
    "exec",
    "eval",
    "compile",
    "__import__",
    "input",
    "globals",
    "locals",
    "vars",
    "getattr",
    "setattr",
    "delattr",
    "breakpoint",
    "format",
}
# Field lookups in format strings and frame/code objects are not visible to
# the AST walk.
BLOCKED_ATTRIBUTES = {
    "format",
    "format_map",
    "gi_frame",
    "gi_code",
    "gi_yieldfrom",
    "cr_frame",
    "cr_code",
    "cr_await",
    "ag_frame",
    "ag_code",
    "f_globals",
    "f_locals",
    "f_builtins",
    "f_back",
    "f_code",
    "tb_frame",
    "tb_next",
}


class PolicyViolation(Exception):
    """Raised when program text uses a construct outside the allowed surface."""


def validate_program_policy(code: str, mode: str = "exec") -> Optional[str]:
    try:
        tree = ast.parse(code, mode=mode)
    except SyntaxError as exc:
        return f"Invalid Python syntax: {exc}"

    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                root = alias.name.split(".")[0]
                if root in BLOCKED_MODULES:
                    return f"Blocked import: {root}"
                if root not in ALLOWED_IMPORTS:
                    return f"Import not allowed: {root}"
        elif isinstance(node, ast.ImportFrom):
            if node.level:
                return "Relative imports are not allowed"
            module = (node.module or "").split(".")[0]
            if module in BLOCKED_MODULES:
                return f"Blocked import: {module}"
            if module not in ALLOWED_IMPORTS:
                return f"Import not allowed: {module}"
        elif isinstance(node, ast.Call):
            if isinstance(node.func, ast.Name) and node.func.id in BLOCKED_CALLS:
                return f"Blocked call: {node.func.id}"
            if isinstance(node.func, ast.Attribute) and isinstance(node.func.value, ast.Name):
                if node.func.value.id in BLOCKED_MODULES:
                    return f"Blocked module access: {node.func.value.id}"
        elif isinstance(node, ast.Attribute):
            if node.attr.startswith("__") and node.attr.endswith("__"):
                return f"Blocked dunder access: {node.attr}"
            if node.attr.startswith("_"):
                return f"Blocked private attribute access: {node.attr}"
            if node.attr in BLOCKED_ATTRIBUTES:
                return f"Blocked attribute access: {node.attr}"
        elif isinstance(node, ast.Name):
            if node.id.startswith("__") and node.id.endswith("__"):
                return f"Blocked dunder access: {node.id}"
        elif isinstance(node, (ast.Global, ast.Nonlocal)):
            return "global/nonlocal statements are not allowed"

    return None


class ModuleView:
    """Read-only view of an allowed module.

    Private names are hidden, and so are modules the module itself imported
    (``json.codecs``, ``statistics.sys``). Its own submodules come back as
    views too.
    """

    __slots__ = ("_module",)

    def __init__(self, module: types.ModuleType):
        object.__setattr__(self, "_module", module)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        module = object.__getattribute__(self, "_module")
        value = getattr(module, name)
        if isinstance(value, types.ModuleType):
            if not value.__name__.startswith(module.__name__ + "."):
                raise AttributeError(f"Module attribute not available: {name}")
            return ModuleView(value)
        return value

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Module views are read-only")

    def __repr__(self) -> str:
        return f"<module {object.__getattribute__(self, '_module').__name__!r}>"


def _guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
    root = name.split(".")[0]
    if level or root not in ALLOWED_IMPORTS:
        raise ImportError(f"Import not allowed: {name}")
    return ModuleView(builtins.__import__(name, globals, locals, fromlist, level))


def safe_builtins(printer: Optional[Callable[..., None]] = None) -> Dict[str, Any]:
    return {
        "__import__": _guarded_import,
        "abs": abs,
        "all": all,
        "any": any,
        "bool": bool,
        "dict": dict,
        "divmod": divmod,
        "enumerate": enumerate,
        "filter": filter,
        "float": float,
        "int": int,
        "isinstance": isinstance,
        "len": len,
        "list": list,
        "map": map,
        "max": max,
        "min": min,
        "print": printer or (lambda *_args, **_kwargs: None),
        "range": range,
        "repr": repr,
        "reversed": reversed,
        "round": round,
        "set": set,
        "sorted": sorted,
        "str": str,
        "sum": sum,
        "tuple": tuple,
        "zip": zip,
        "Exception": Exception,
        "ValueError": ValueError,
        "TypeError": TypeError,
        "KeyError": KeyError,
        "IndexError": IndexError,
        "RuntimeError": RuntimeError,
        "ZeroDivisionError": ZeroDivisionError,
        "AssertionError": AssertionError,
    }


def compile_program(
    code: str,
    param_names: Iterable[str],
    printer: Optional[Callable[..., None]] = None,
) -> Callable[..., Any]:
    """Compile *code* as the body of a function taking *param_names*.

    A top-level ``return`` in the program becomes the function's return
    value; a program without one returns None.

    Raises:
        SyntaxError: the program text does not parse.
        PolicyViolation: the program uses a blocked construct.
    """
    body = ast.parse(code, filename="<program>", mode="exec").body
    policy_error = validate_program_policy(code)
    if policy_error:
        raise PolicyViolation(policy_error)

    params = ", ".join(param_names)
    wrapper = ast.parse(f"def {PROGRAM_FUNC_NAME}({params}):\n    pass\n")
    wrapper.body[0].body = body or [ast.Pass()]
    ast.fix_missing_locations(wrapper)

    namespace: Dict[str, Any] = {"__builtins__": safe_builtins(printer)}
    exec(compile(wrapper, "<program>", "exec"), namespace)
    return namespace[PROGRAM_FUNC_NAME]


def run_program(
    code: str,
    capabilities: Dict[str, Any],
    printer: Optional[Callable[..., None]] = None,
) -> Any:
    program = compile_program(code, capabilities.keys(), printer=printer)
    return program(**capabilities)


def evaluate_expression(text: str, capabilities: Dict[str, Any]) -> Any:
    """Evaluate a single expression against *capabilities*."""
    tree = ast.parse(text, filename="<query>", mode="eval")
    policy_error = validate_program_policy(text, mode="eval")
    if policy_error:
        raise PolicyViolation(policy_error)
    code = compile(tree, "<query>", "eval")
    return eval(code, {"__builtins__": safe_builtins()}, dict(capabilities))
