r"""merchcore\engine\services\__init__.py

Calculation services of the planning engine."""

from importlib import import_module
from typing import Any

__all__ = [
    "clearance_optimizer_service",
    "forecasting_service",
    "history_service",
    "scenario_service",
]


def __getattr__(name: str) -> Any:
    if name in __all__:
        module = import_module(f"{__name__}.{name}")
        globals()[name] = module
        return module
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
