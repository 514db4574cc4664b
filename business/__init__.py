"""业务层：认证网关、仓库作业状态机、群消息通知。"""
from business.auth import AuthGateway, EmployeeCredential
from business.notifier import MessageNotifier
from business.workflow import WorkflowEngine

__all__ = [
    "AuthGateway",
    "EmployeeCredential",
    "MessageNotifier",
    "WorkflowEngine",
]
