"""
状态转换表
每个实体的合法迁移集中声明在这里，服务层据此生成条件更新的 WHERE 子句
"""
from core.engine.state_machine import StateTransition, TransitionTable
from roomkey.models.ontology import RoomStatus, RfidStatus


ROOM_TRANSITIONS = TransitionTable("Room", [
    StateTransition(RoomStatus.AVAILABLE, RoomStatus.RESERVED, "reserve"),
    StateTransition(RoomStatus.RESERVED, RoomStatus.OCCUPIED, "occupy"),
    StateTransition(RoomStatus.RESERVED, RoomStatus.AVAILABLE, "check_out"),
    StateTransition(RoomStatus.OCCUPIED, RoomStatus.AVAILABLE, "check_out"),
    StateTransition(RoomStatus.RESERVED, RoomStatus.AVAILABLE, "no_show"),
])


RFID_TRANSITIONS = TransitionTable("RfidTag", [
    StateTransition(RfidStatus.AVAILABLE, RfidStatus.ASSIGNED, "assign"),
    StateTransition(RfidStatus.ASSIGNED, RfidStatus.ACTIVE, "activate"),
    StateTransition(RfidStatus.AVAILABLE, RfidStatus.LOST, "mark_lost"),
    StateTransition(RfidStatus.ASSIGNED, RfidStatus.LOST, "mark_lost"),
    StateTransition(RfidStatus.ACTIVE, RfidStatus.LOST, "mark_lost"),
    StateTransition(RfidStatus.ASSIGNED, RfidStatus.AVAILABLE, "unassign"),
    StateTransition(RfidStatus.ACTIVE, RfidStatus.AVAILABLE, "unassign"),
    StateTransition(RfidStatus.LOST, RfidStatus.AVAILABLE, "unassign"),
    # 退房释放：挂失的凭证保持挂失
    StateTransition(RfidStatus.ASSIGNED, RfidStatus.AVAILABLE, "release"),
    StateTransition(RfidStatus.ACTIVE, RfidStatus.AVAILABLE, "release"),
    # 挂失后找回，仍归原持有人
    StateTransition(RfidStatus.LOST, RfidStatus.ASSIGNED, "restore"),
])
