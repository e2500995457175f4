"""
core - 领域无关的基础设施层

提供与具体业务无关的通用抽象：
- engine: 状态转换表（受控状态迁移）
- scheduler: 定时任务后端接口
- notification: 通知渠道接口

roomkey 应用层在这些接口之上实现门禁 / 住宿协调逻辑。
"""

__version__ = "0.1.0"
