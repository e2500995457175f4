"""
roomkey - 酒店 RFID 门禁与住宿协调服务

房间台账、RFID 凭证登记、入住记录台账三者之间的状态协调：
登记入住 → 首次刷卡自动入住 → 到期自动退房。
"""

__version__ = "1.0.0"
