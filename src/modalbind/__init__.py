"""Modal keybinding compiler package."""

from modalbind.compiler import (
    compile_document,
    compile_file,
    compile_specification,
    group_by_index,
)
from modalbind.expression import Evaluator, compile_expression
from modalbind.models import CompileOptions, CompileResult, ConcreteBinding, ConfigError

__all__ = [
    "CompileOptions",
    "CompileResult",
    "ConcreteBinding",
    "ConfigError",
    "Evaluator",
    "compile_document",
    "compile_expression",
    "compile_file",
    "compile_specification",
    "group_by_index",
]
