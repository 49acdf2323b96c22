"""
画格生成状态机

pending --(generate)--> generating --(success)--> completed
generating --(failure)--> failed
failed --(retry/generate)--> generating
completed/cached --(regenerate)--> generating
(从存储加载且已有图片) --> cached
"""

from typing import Dict, FrozenSet

from ..exceptions import InvalidStateTransitionError
from ..models.manga import GenerationStatus, GenerationStatusType

S = GenerationStatusType

# 允许的状态转换表
PANEL_TRANSITIONS: Dict[GenerationStatusType, FrozenSet[GenerationStatusType]] = {
    S.PENDING: frozenset({S.GENERATING, S.CACHED}),
    S.GENERATING: frozenset({S.COMPLETED, S.FAILED}),
    S.COMPLETED: frozenset({S.GENERATING, S.CACHED}),
    S.FAILED: frozenset({S.GENERATING, S.CACHED}),
    S.CACHED: frozenset({S.GENERATING}),
}


def can_transition(current: GenerationStatus, target: GenerationStatus) -> bool:
    """判断状态转换是否合法"""
    return target.type in PANEL_TRANSITIONS[current.type]


def validate_transition(current: GenerationStatus, target: GenerationStatus) -> None:
    """
    校验状态转换

    Raises:
        InvalidStateTransitionError: 转换不被允许时抛出
    """
    if not can_transition(current, target):
        raise InvalidStateTransitionError(str(current), str(target))
