from templating.evaluator import (
    collect_dependencies,
    evaluate,
    evaluate_bool,
    evaluate_native,
    lookup_path,
    resolve_deep,
    stringify,
)
from templating.functions import TEMPLATE_FUNCTIONS

__all__ = [
    "TEMPLATE_FUNCTIONS",
    "collect_dependencies",
    "evaluate",
    "evaluate_bool",
    "evaluate_native",
    "lookup_path",
    "resolve_deep",
    "stringify",
]
