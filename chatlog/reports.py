# paginated chat reports and single-record message lookups

import logging
import math
import time
from typing import Dict, List, Optional, Sequence

import statsd
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from chatlog.dates import DateNormalizer, to_storage
from chatlog.errors import InternalError, NotFoundError, ValidationError
from chatlog.models import ChatMessage, ChatRecord
from chatlog.serializers import serialize_message, serialize_summary

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
# offsets must fit a signed 64-bit column
MAX_OFFSET = 2 ** 62


class Report(BaseModel):
    data: List[Dict]
    current_page: int
    total_pages: int
    total_count: int
    total_input_tokens: int
    total_output_tokens: int
    start_date: str
    end_date: str

    def to_response(self) -> Dict:
        body = self.model_dump()
        return {
            "data": body["data"],
            "currentPage": body["current_page"],
            "totalPages": body["total_pages"],
            "totalCount": body["total_count"],
            "totalInputTokens": body["total_input_tokens"],
            "totalOutputTokens": body["total_output_tokens"],
            "startDate": body["start_date"],
            "endDate": body["end_date"],
        }


def coerce_positive(value, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if number < 1:
        raise ValidationError(f"{field} must be at least 1")
    return number


class ReportQueryEngine:
    def __init__(self, pg_engine, normalizer: DateNormalizer, metrics: statsd.StatsClient):
        self.pg_engine = pg_engine
        self.normalizer = normalizer
        self.metrics = metrics

    def build_conditions(self, window, email: Optional[str], exclude_emails: Optional[Sequence[str]]):
        start, end = window
        conditions = [
            col(ChatRecord.chat_date) >= to_storage(start),
            col(ChatRecord.chat_date) <= to_storage(end),
        ]
        if email:
            conditions.append(ChatRecord.email == email)
        if exclude_emails:
            conditions.append(col(ChatRecord.email).not_in(list(exclude_emails)))
        return conditions

    def query_chat_histories(
        self,
        page=1,
        page_size=10,
        email: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        exclude_emails: Optional[Sequence[str]] = None,
    ) -> Report:
        page = coerce_positive(page, "page")
        page_size = min(coerce_positive(page_size, "pageSize"), MAX_PAGE_SIZE)
        if (page - 1) * page_size > MAX_OFFSET:
            raise ValidationError("page is out of range")
        window = self.normalizer.resolve_window(start_date, end_date)
        conditions = self.build_conditions(window, email, exclude_emails)

        start_time = time.time()
        try:
            with Session(self.pg_engine) as session:
                rows = session.exec(
                    select(
                        ChatRecord.id,
                        ChatRecord.email,
                        ChatRecord.chat_date,
                        ChatRecord.input_token,
                        ChatRecord.output_token,
                    )
                    .where(*conditions)
                    .order_by(col(ChatRecord.chat_date).desc(), col(ChatRecord.id).desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                ).all()

                total_count, total_input, total_output = session.exec(
                    select(
                        func.count(col(ChatRecord.id)),
                        func.coalesce(func.sum(ChatRecord.input_token), 0),
                        func.coalesce(func.sum(ChatRecord.output_token), 0),
                    ).where(*conditions)
                ).one()
        except SQLAlchemyError as e:
            logger.exception("Error fetching chat histories")
            self.metrics.incr("errors.report_query")
            raise InternalError("Error fetching chat histories", details=str(e))

        self.metrics.incr("report.query")
        self.metrics.timing("report.query.timed", (time.time() - start_time) * 1000)

        start_label, end_label = self.normalizer.window_as_civil(window)
        return Report(
            data=[serialize_summary(row, self.normalizer) for row in rows],
            current_page=page,
            total_pages=math.ceil(total_count / page_size),
            total_count=int(total_count),
            total_input_tokens=int(total_input),
            total_output_tokens=int(total_output),
            start_date=start_label,
            end_date=end_label,
        )

    def get_chat_list(self, record_id) -> List[Dict]:
        try:
            chat_id = int(record_id)
        except (TypeError, ValueError):
            raise NotFoundError("Chat history not found")

        try:
            with Session(self.pg_engine) as session:
                record = session.get(ChatRecord, chat_id)
                if record is None:
                    raise NotFoundError("Chat history not found")
                messages = session.exec(
                    select(ChatMessage).where(ChatMessage.chat_id == chat_id).order_by(ChatMessage.id)
                ).all()
        except SQLAlchemyError as e:
            logger.exception("Error fetching chat list %s", record_id)
            raise InternalError("Error fetching chat list", details=str(e))

        return [serialize_message(message, self.normalizer) for message in messages]
