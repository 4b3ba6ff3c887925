"""Conjunto de dados reutilizável para cenários de teste."""

INSTANCE_ID = "3C1F-INSTANCE"
GROUP_NAME = "Bazar VIP"
GROUP_CHAT_ID = "120363025555555555-group"
CUSTOMER_PHONE = "5511987654321"
CUSTOMER_PHONE_NORMALIZED = "11987654321"

GROUP_MESSAGE_PAYLOAD = {
    "instanceId": INSTANCE_ID,
    "messageId": "3EB0A1B2C3D4E5F6",
    "phone": GROUP_CHAT_ID,
    "participantPhone": CUSTOMER_PHONE,
    "chatName": GROUP_NAME,
    "senderName": "Maria",
    "isGroup": True,
    "fromMe": False,
    "type": "ReceivedCallback",
    "text": {"message": "quero C100 e C9999"},
}

DIRECT_MESSAGE_PAYLOAD = {
    "instanceId": INSTANCE_ID,
    "messageId": "3EB0DIRECT0001",
    "phone": CUSTOMER_PHONE,
    "isGroup": False,
    "fromMe": False,
    "type": "ReceivedCallback",
    "text": {"message": "C100"},
}

STATUS_CALLBACK_PAYLOAD = {
    "instanceId": INSTANCE_ID,
    "type": "MessageStatusCallback",
    "status": "READ",
    "ids": ["zapi-msg-001"],
    "phone": CUSTOMER_PHONE,
}
