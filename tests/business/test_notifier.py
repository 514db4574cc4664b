"""MessageNotifier tests.

Outbound HTTP is replaced with FakeHttp, so no request leaves the process.
"""
import pytest
import requests

from business.notifier import MESSAGE_TEMPLATES, MessageNotifier, build_text_item
from database.errors import SendMessageError, ValidationError
from tests.conftest import FakeHttp, FakeResponse


def merchant(mid, group, send=True, mentions=None):
    return {"id": mid, "group_name": group, "send_message": send,
            "mention_list": mentions or []}


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def notifier(http):
    return MessageNotifier(gateway_url="http://gateway.local/send",
                           robot_id="robot-1", timeout=3, http=http)


class TestSendGroupMessage:

    def test_payload(self, notifier, http):
        notifier.send_group_message("群A", "你好", ["@张三"])
        call = http.calls[0]
        assert call["url"] == "http://gateway.local/send"
        assert call["params"] == {"robotId": "robot-1"}
        assert call["timeout"] == 3
        assert call["json"] == {
            "socketType": 2,
            "list": [{"type": 203, "titleList": ["群A"],
                      "receivedContent": "你好", "atList": ["@张三"]}],
        }

    def test_file_message(self, notifier, http):
        notifier.send_group_message(
            "群A", "鲜果铺 - 订单截图",
            file_url="http://files.local/uploads/order-screenshots/m1/20240501/0830.jpg",
        )
        item = http.calls[0]["json"]["list"][0]
        assert item == {
            "type": 218,
            "titleList": ["群A"],
            "objectName": "0830.jpg",
            "fileUrl": "http://files.local/uploads/order-screenshots/m1/20240501/0830.jpg",
            "fileType": "image",
            "extraText": "鲜果铺 - 订单截图",
        }

    def test_file_message_object_name(self, notifier, http):
        notifier.send_group_message("群A", "截图", file_url="http://f/x.jpg",
                                    object_name="order.jpg")
        assert http.calls[0]["json"]["list"][0]["objectName"] == "order.jpg"

    def test_empty_content(self, notifier):
        with pytest.raises(ValidationError):
            notifier.send_group_message("群A", "")

    def test_unconfigured_gateway(self, http):
        notifier = MessageNotifier(gateway_url="", robot_id="r", http=http)
        with pytest.raises(SendMessageError):
            notifier.send_group_message("群A", "你好")
        assert http.calls == []

    def test_non_ok_response(self):
        http = FakeHttp(response=FakeResponse(status_code=502))
        notifier = MessageNotifier(gateway_url="http://gw", robot_id="r", http=http)
        with pytest.raises(SendMessageError):
            notifier.send_group_message("群A", "你好")

    def test_network_error_not_retried(self):
        http = FakeHttp(error=requests.ConnectionError("refused"))
        notifier = MessageNotifier(gateway_url="http://gw", robot_id="r", http=http)
        with pytest.raises(SendMessageError):
            notifier.send_group_message("群A", "你好")
        assert len(http.calls) == 1

    def test_non_json_body(self):
        http = FakeHttp(response=FakeResponse(status_code=200))
        notifier = MessageNotifier(gateway_url="http://gw", robot_id="r", http=http)
        assert notifier.send_group_message("群A", "你好") is None


class TestBroadcast:

    def test_invalid_type(self, notifier):
        with pytest.raises(ValidationError):
            notifier.broadcast("Z", [merchant("m1", "群A")])

    def test_no_targets(self, notifier, http):
        result = notifier.broadcast("A", [merchant("m1", "群A", send=False)])
        assert result["total_merchants"] == 0
        assert http.calls == []

    def test_single_request_for_all_groups(self, notifier, http):
        result = notifier.broadcast("b", [
            merchant("m1", "群A", mentions=["@甲"]),
            merchant("m2", "群B"),
            merchant("m3", "", send=True),
        ])
        assert len(http.calls) == 1
        items = http.calls[0]["json"]["list"]
        assert [item["titleList"] for item in items] == [["群A"], ["群B"]]
        assert all(item["receivedContent"] == MESSAGE_TEMPLATES["B"] for item in items)
        assert result["messages_sent"] == 2
        assert result["results"][0] == {
            "merchant_id": "m1", "group_name": "群A",
            "at_list": ["@甲"], "status": "success",
        }

    def test_templates_cover_four_types(self):
        assert sorted(MESSAGE_TEMPLATES) == ["A", "B", "C", "D"]

    def test_build_text_item_defaults(self):
        assert build_text_item("群", "内容")["atList"] == []
