"""
core/engine - 核心引擎模块

- state_machine: 状态转换表（源状态 → 允许的目标状态）

使用方式:
    >>> from core.engine import StateTransition, TransitionTable
"""

from core.engine.state_machine import (
    StateTransition,
    TransitionTable,
    InvalidTransition,
)

__all__ = [
    "StateTransition",
    "TransitionTable",
    "InvalidTransition",
]
