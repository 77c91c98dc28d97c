from .functions import function_filename, render_function
from .plan_compiler import (
    CompileResult,
    FunctionFile,
    MigrationFile,
    SdkFile,
    TestFile,
    compile_plan,
)

__all__ = [
    "CompileResult",
    "FunctionFile",
    "MigrationFile",
    "SdkFile",
    "TestFile",
    "compile_plan",
    "function_filename",
    "render_function",
]
