from __future__ import annotations

import importlib
from typing import Any


def load_symbol(dotted: str, *, factory: str | None = None) -> Any:
    """
    Resolve "package.module:Name" (or "package.module.Name").

    With `factory`, the symbol must also expose that callable, e.g.
    load_symbol(cfg.store, factory="from_config") for pluggable stores and
    adapters. A bad path raises ImportError naming what was asked for.
    """
    if ":" in dotted:
        module_name, _, symbol_name = dotted.partition(":")
    elif "." in dotted:
        module_name, symbol_name = dotted.rsplit(".", 1)
    else:
        raise ImportError(f"not a dotted path: {dotted!r}")

    module = importlib.import_module(module_name)
    symbol = getattr(module, symbol_name, None)
    if symbol is None:
        raise ImportError(f"{module_name!r} has no attribute {symbol_name!r}")
    if factory is not None and not callable(getattr(symbol, factory, None)):
        raise ImportError(f"{dotted!r} does not provide {factory}()")
    return symbol
