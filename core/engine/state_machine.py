"""
core/engine/state_machine.py

状态转换表 - 为存放在外部存储中的实体声明合法的状态迁移

与内存状态机不同，实体的当前状态保存在数据库行上。转换表只回答两个问题：
1. 某个触发动作（trigger）允许从哪些源状态出发；
2. 它会把实体迁移到哪个目标状态。

服务层据此拼出条件更新：
    UPDATE ... SET status = <target> WHERE id = ? AND status IN (<sources>)
受影响行数为 0 即表示"已被别人迁移"或"不具备迁移条件"。
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class InvalidTransition(ValueError):
    """转换表中不存在的迁移"""

    def __init__(self, name: str, from_state: Optional[str], trigger: str):
        self.name = name
        self.from_state = from_state
        self.trigger = trigger
        super().__init__(
            f"{name}: transition '{trigger}' is not allowed from state '{from_state}'"
        )


@dataclass(frozen=True)
class StateTransition:
    """
    状态转换定义

    Attributes:
        from_state: 源状态
        to_state: 目标状态
        trigger: 触发动作
    """

    from_state: str
    to_state: str
    trigger: str


class TransitionTable:
    """
    状态转换表

    Example:
        >>> table = TransitionTable("Room", [
        ...     StateTransition("available", "reserved", "reserve"),
        ...     StateTransition("reserved", "occupied", "occupy"),
        ... ])
        >>> table.sources("reserve")
        ('available',)
        >>> table.target("occupy")
        'occupied'
    """

    def __init__(self, name: str, transitions: Iterable[StateTransition]):
        self._name = name
        self._transitions: List[StateTransition] = list(transitions)
        self._by_trigger: Dict[str, List[StateTransition]] = {}

        for t in self._transitions:
            existing = self._by_trigger.setdefault(t.trigger, [])
            if existing and existing[0].to_state != t.to_state:
                raise ValueError(
                    f"{name}: trigger '{t.trigger}' maps to more than one target state"
                )
            existing.append(t)

    @property
    def name(self) -> str:
        return self._name

    def triggers(self) -> List[str]:
        """所有触发动作"""
        return list(self._by_trigger.keys())

    def sources(self, trigger: str) -> Tuple[str, ...]:
        """触发动作允许的源状态"""
        if trigger not in self._by_trigger:
            raise InvalidTransition(self._name, None, trigger)
        return tuple(_value(t.from_state) for t in self._by_trigger[trigger])

    def target(self, trigger: str) -> str:
        """触发动作的目标状态"""
        if trigger not in self._by_trigger:
            raise InvalidTransition(self._name, None, trigger)
        return _value(self._by_trigger[trigger][0].to_state)

    def can_fire(self, current_state, trigger: str) -> bool:
        """检查当前状态下能否触发该动作"""
        if trigger not in self._by_trigger:
            return False
        return _value(current_state) in self.sources(trigger)

    def is_allowed(self, from_state, to_state) -> bool:
        """检查 from_state → to_state 是否出现在转换表中"""
        return any(
            _value(t.from_state) == _value(from_state) and _value(t.to_state) == _value(to_state)
            for t in self._transitions
        )

    def require(self, current_state, trigger: str) -> str:
        """
        校验迁移并返回目标状态

        Raises:
            InvalidTransition: 当前状态不能触发该动作
        """
        if not self.can_fire(current_state, trigger):
            logger.warning(
                f"Invalid transition on {self._name}: '{_value(current_state)}' (trigger: {trigger})"
            )
            raise InvalidTransition(self._name, _value(current_state), trigger)
        return self.target(trigger)


def _value(state) -> str:
    """兼容 str 枚举与普通字符串"""
    return getattr(state, "value", state)


__all__ = [
    "StateTransition",
    "TransitionTable",
    "InvalidTransition",
]
