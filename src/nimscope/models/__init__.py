"""SQLModel database models for nimscope."""

from nimscope.models._vector import VectorType
from nimscope.models.modules import Module, ModuleBase
from nimscope.models.symbols import EMBEDDING_FIELDS, Symbol, SymbolBase

__all__ = [
    "EMBEDDING_FIELDS",
    "Module",
    "ModuleBase",
    "Symbol",
    "SymbolBase",
    "VectorType",
]
