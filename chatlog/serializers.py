from typing import Dict, Iterable, List

from chatlog.dates import DateNormalizer
from chatlog.models import ChatMessage, ChatRecord


def serialize_message(message: ChatMessage, normalizer: DateNormalizer) -> Dict:
    return {
        "id": message.id,
        "sender": message.sender,
        "date": normalizer.to_civil_timestamp(message.date),
        "message": message.message,
    }


def serialize_record(record: ChatRecord, messages: Iterable[ChatMessage], normalizer: DateNormalizer) -> Dict:
    return {
        "id": record.id,
        "email": record.email,
        "chat_date": normalizer.to_civil_timestamp(record.chat_date),
        "input_token": record.input_token,
        "output_token": record.output_token,
        "chat_list": [serialize_message(message, normalizer) for message in messages],
    }


def serialize_summary(row, normalizer: DateNormalizer) -> Dict:
    return {
        "id": row.id,
        "email": row.email,
        "chat_date": normalizer.to_civil_timestamp(row.chat_date),
        "input_token": row.input_token,
        "output_token": row.output_token,
    }


def group_messages(messages: Iterable[ChatMessage]) -> Dict[int, List[ChatMessage]]:
    grouped: Dict[int, List[ChatMessage]] = {}
    for message in messages:
        grouped.setdefault(message.chat_id, []).append(message)
    return grouped
