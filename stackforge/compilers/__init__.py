"""Resource compilers: each merges one concern into the template."""

from __future__ import annotations

from stackforge.compilers.base import BaseCompiler
from stackforge.compilers.core_template import CustomResourcesCompiler, build_core_template
from stackforge.compilers.functions import FunctionCompiler
from stackforge.compilers.http import HttpEventCompiler
from stackforge.compilers.iam import IamCompiler
from stackforge.compilers.s3 import S3EventCompiler
from stackforge.compilers.schedule import ScheduleEventCompiler
from stackforge.compilers.sns import SnsEventCompiler
from stackforge.core.naming import NamingResolver

# Registration order is execution order within a phase.
DEFAULT_COMPILERS: list[type[BaseCompiler]] = [
    CustomResourcesCompiler,
    S3EventCompiler,
    SnsEventCompiler,
    ScheduleEventCompiler,
    HttpEventCompiler,
    IamCompiler,
    FunctionCompiler,
]


def default_compilers(naming: NamingResolver, timestamp_ms: int) -> list[BaseCompiler]:
    return [compiler(naming, timestamp_ms) for compiler in DEFAULT_COMPILERS]


__all__ = [
    "DEFAULT_COMPILERS",
    "BaseCompiler",
    "CustomResourcesCompiler",
    "FunctionCompiler",
    "HttpEventCompiler",
    "IamCompiler",
    "S3EventCompiler",
    "ScheduleEventCompiler",
    "SnsEventCompiler",
    "build_core_template",
    "default_compilers",
]
