# write path for day-bucketed chat records, one per (email, civil day)

import logging
import time
from typing import Dict, List, Optional, Sequence

import statsd
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from chatlog.dates import DateNormalizer, to_storage
from chatlog.db import upsert_insert
from chatlog.errors import InternalError, NotFoundError, ValidationError
from chatlog.models import ChatMessage, ChatRecord
from chatlog.serializers import group_messages, serialize_record

logger = logging.getLogger(__name__)


class AppendResult(BaseModel):
    created: bool
    record: Dict


def validate_token(value, field: str) -> int:
    # bool is an int subclass, but true/false is not a token count
    if value is None or isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} is required and must be an integer")
    if value < 0:
        raise ValidationError(f"{field} must not be negative")
    return value


class ChatAccumulator:
    def __init__(self, pg_engine, normalizer: DateNormalizer, metrics: statsd.StatsClient):
        self.pg_engine = pg_engine
        self.normalizer = normalizer
        self.metrics = metrics
        self.insert = upsert_insert(pg_engine)

    def build_upsert(self, email: str, chat_day, input_token: int, output_token: int):
        table = ChatRecord.__table__
        stmt = self.insert(table).values(
            email=email,
            chat_date=to_storage(chat_day),
            input_token=input_token,
            output_token=output_token,
            update_count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.email, table.c.chat_date],
            set_={
                "input_token": table.c.input_token + stmt.excluded.input_token,
                "output_token": table.c.output_token + stmt.excluded.output_token,
                "update_count": table.c.update_count + 1,
            },
        )
        return stmt.returning(table.c.id, table.c.update_count)

    def prepare_messages(self, chat_list: Sequence[Dict]) -> List[Dict]:
        prepared = []
        for index, chat in enumerate(chat_list):
            if not isinstance(chat, dict):
                raise ValidationError(f"chat_list[{index}] must be an object")
            prepared.append({
                "sender": str(chat.get("sender") or ""),
                "message": str(chat.get("message") or ""),
                "date": self.normalizer.parse_instant_or_now(chat.get("date"), field=f"chat_list[{index}].date"),
            })
        return prepared

    def append_chat(
        self,
        email: str,
        chat_date: str,
        chat_list: Sequence[Dict],
        input_token: Optional[int],
        output_token: Optional[int],
    ) -> AppendResult:
        if not email or not chat_date:
            raise ValidationError("email and chat_date are required")
        if chat_list is None or isinstance(chat_list, (str, bytes, dict)):
            raise ValidationError("chat_list must be a list")
        input_token = validate_token(input_token, "input_token")
        output_token = validate_token(output_token, "output_token")

        # everything is parsed before the store is touched
        chat_day = self.normalizer.bucket_day(chat_date)
        messages = self.prepare_messages(chat_list)
        logger.debug("Accumulating %s messages for %s on %s", len(messages), email, chat_day.isoformat())

        start_time = time.time()
        try:
            with Session(self.pg_engine) as session:
                row = session.connection().execute(
                    self.build_upsert(email, chat_day, input_token, output_token)
                ).one()
                chat_id, update_count = row.id, row.update_count

                session.add_all([
                    ChatMessage(
                        chat_id=chat_id,
                        sender=message["sender"],
                        date=to_storage(message["date"]),
                        message=message["message"],
                    )
                    for message in messages
                ])
                session.commit()

                record = session.get(ChatRecord, chat_id)
                stored_messages = session.exec(
                    select(ChatMessage).where(ChatMessage.chat_id == chat_id).order_by(ChatMessage.id)
                ).all()
                result = AppendResult(
                    created=update_count == 1,
                    record=serialize_record(record, stored_messages, self.normalizer),
                )
        except SQLAlchemyError as e:
            logger.exception("Error updating/creating chat for %s", email)
            self.metrics.incr("errors.update_chat")
            raise InternalError("Error updating/creating chat", details=str(e))

        self.metrics.incr("chat.created" if result.created else "chat.updated")
        self.metrics.timing("update_chat.timed", (time.time() - start_time) * 1000)
        return result

    def get_user_histories(self, email: str) -> List[Dict]:
        if not email:
            raise ValidationError("Email parameter is required")

        try:
            with Session(self.pg_engine) as session:
                records = session.exec(
                    select(ChatRecord)
                    .where(ChatRecord.email == email)
                    .order_by(col(ChatRecord.chat_date).desc(), col(ChatRecord.id).desc())
                ).all()
                if not records:
                    raise NotFoundError("No chat history found for this email")

                messages = session.exec(
                    select(ChatMessage)
                    .where(col(ChatMessage.chat_id).in_([record.id for record in records]))
                    .order_by(ChatMessage.id)
                ).all()
        except SQLAlchemyError as e:
            logger.exception("Error fetching chat history for %s", email)
            raise InternalError("Error fetching chat history", details=str(e))

        by_record = group_messages(messages)
        return [serialize_record(record, by_record.get(record.id, []), self.normalizer) for record in records]
