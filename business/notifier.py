"""群消息通知：通过外部机器人网关向商家群发送消息。

网关请求格式::

    POST {message_gateway_url}?robotId={robot_id}
    {
        "socketType": 2,
        "list": [
            {"type": 203, "titleList": ["群名称"],
             "receivedContent": "消息内容", "atList": ["@成员"]}
        ]
    }

附带文件（如订单截图）时使用 type 218，titleList 相同，
内容放在 extraText，文件通过 fileUrl 提供。

发送失败抛出 SendMessageError，不做重试。
"""
from typing import Any, Dict, List, Optional

import requests
from loguru import logger

from config.settings import settings
from database.errors import SendMessageError, ValidationError

SOCKET_TYPE = 2
TEXT_MESSAGE_TYPE = 203
FILE_MESSAGE_TYPE = 218

MESSAGE_TEMPLATES: Dict[str, str] = {
    "A": (
        "🔊 炫朝云仓通知：\n"
        "👉 您好，请在 8:30 之前发送今日派单数据，销量截图或者文字信息，"
        "明确告知我云仓当前销量情况(包含：订单预估、当前销量、)!\n"
        "🚩 超时未发放，当日罚款云仓不承担；超过 9:00 视为严重迟到，"
        "云合加收 100 元/趟派车费，同时产生罚款云仓不承担！\n"
        "🤝 智能客服群发,如无排期请忽略! 🤝"
    ),
    "B": (
        "🔊 炫朝云仓通知：\n"
        "👉 您好,目前已经基本入完库了,请检查今日入库情况，"
        "如有未入库产品请及时告知我云仓,谢谢相互合作!\n"
        "🚩 不足八点预估100%及时反馈,否则产生罚款,我方不承担!"
    ),
    "C": (
        "🔊 炫朝云仓通知：\n"
        "👉 您好,晚上8点预补一次货，请检查一下当前销量，有需要补货的请发截图"
        "或者文字信息，明确告知我云仓当前销量情况(包含：订单预估、当前销量、)！\n"
        "🚩 超期发放或不发会造成您的履约罚款！"
    ),
    "D": (
        "👉 您好,夜间补货，有需要补货的请在 23:10 之前发截图或者文字信息，"
        "明确告知我云仓当前销量情况(包含：订单预估、当前销量、)!\n"
        "🚩 超时未发放可能会产品迟到罚款，云仓不承担；超过 23:15 视为严重迟到，"
        "加收 100 元/趟派车费，同时产生罚款云仓不承担！\n"
        "🚩🚩 重要：补货完一定要检查并发截单截图！！！"
    ),
}


def build_text_item(group_name: str, content: str,
                    mention_list: Optional[List[str]] = None) -> Dict[str, Any]:
    return {
        "type": TEXT_MESSAGE_TYPE,
        "titleList": [group_name],
        "receivedContent": content,
        "atList": list(mention_list or []),
    }


def build_file_item(group_name: str, file_url: str, object_name: str,
                    extra_text: str = "", file_type: str = "image") -> Dict[str, Any]:
    return {
        "type": FILE_MESSAGE_TYPE,
        "titleList": [group_name],
        "objectName": object_name,
        "fileUrl": file_url,
        "fileType": file_type,
        "extraText": extra_text,
    }


class MessageNotifier:
    """群消息网关客户端。

    Args:
        gateway_url: 网关地址，默认取 settings.message_gateway_url。
        robot_id: 机器人ID，默认取 settings.robot_id。
        timeout: 请求超时（秒）。
        http: requests.Session 或兼容对象，测试时可替换。
    """

    def __init__(self, gateway_url: Optional[str] = None,
                 robot_id: Optional[str] = None,
                 timeout: Optional[float] = None,
                 http: Optional[Any] = None) -> None:
        self.gateway_url = gateway_url if gateway_url is not None else settings.message_gateway_url
        self.robot_id = robot_id if robot_id is not None else settings.robot_id
        self.timeout = timeout or settings.message_timeout
        self.http = http or requests.Session()

    def _post(self, items: List[Dict[str, Any]]) -> Any:
        if not self.gateway_url:
            raise SendMessageError("未配置消息网关地址")

        payload = {"socketType": SOCKET_TYPE, "list": items}
        try:
            response = self.http.post(
                self.gateway_url,
                params={"robotId": self.robot_id},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"消息网关请求失败: {e}")
            raise SendMessageError(f"消息发送失败: {e}") from e

        if not response.ok:
            logger.error(f"消息网关返回错误状态: {response.status_code}")
            raise SendMessageError(f"消息发送失败: HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError:
            return None

    def send_group_message(self, group_name: str, content: str,
                           mention_list: Optional[List[str]] = None,
                           file_url: Optional[str] = None,
                           object_name: Optional[str] = None) -> Any:
        """向单个群发送消息。

        Args:
            group_name: 群名称。
            content: 文本内容；附带文件时作为文件说明。
            mention_list: 需要 @ 的成员（仅文本消息）。
            file_url: 文件地址，提供时发送文件消息。
            object_name: 文件显示名称，默认取 file_url 的最后一段。

        Raises:
            ValidationError: 群名称或内容为空。
            SendMessageError: 网关未配置、请求失败或返回非 2xx。
        """
        if not group_name or not content:
            raise ValidationError("群名称和消息内容不能为空")
        if file_url:
            name = object_name or file_url.rstrip("/").rsplit("/", 1)[-1]
            item = build_file_item(group_name, file_url, name, content)
        else:
            item = build_text_item(group_name, content, mention_list)
        result = self._post([item])
        logger.info(f"群消息已发送: {group_name}")
        return result

    def broadcast(self, message_type: str,
                  merchants: List[Dict[str, Any]]) -> Dict[str, Any]:
        """按模板向多个商家群发送通知（一次网关请求）。

        Args:
            message_type: 模板类型 A / B / C / D。
            merchants: 商家字典列表，只有 send_message 为真且有群名称的会被发送。

        Returns:
            ``{message_type, total_merchants, messages_sent, result, results}``。
        """
        content = MESSAGE_TEMPLATES.get(str(message_type or "").upper())
        if content is None:
            raise ValidationError("无效的消息类型，必须为 A、B、C、D 之一")

        targets = [
            m for m in merchants if m.get("send_message") and m.get("group_name")
        ]
        if not targets:
            return {
                "message_type": message_type,
                "total_merchants": 0,
                "messages_sent": 0,
                "result": None,
                "results": [],
            }

        items = [
            build_text_item(m["group_name"], content, m.get("mention_list"))
            for m in targets
        ]
        result = self._post(items)
        logger.info(f"模板 {message_type} 群发完成: {len(items)} 个群")
        return {
            "message_type": message_type,
            "total_merchants": len(targets),
            "messages_sent": len(items),
            "result": result,
            "results": [
                {
                    "merchant_id": m["id"],
                    "group_name": m["group_name"],
                    "at_list": m.get("mention_list") or [],
                    "status": "success",
                }
                for m in targets
            ],
        }
