from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlmodel import Session, select

from chatlog.accumulator import ChatAccumulator
from chatlog.errors import NotFoundError, ValidationError
from chatlog.models import ChatMessage, ChatRecord


def m(sender, text, date=None):
    return {"sender": sender, "message": text, "date": date}


def test_first_append_creates_record(accumulator, metrics):
    result = accumulator.append_chat("kim@example.com", "2024-05-01", [m("user", "hello")], 5, 3)

    assert result.created is True
    assert result.record["email"] == "kim@example.com"
    assert result.record["chat_date"] == "2024-05-01T00:00:00+09:00"
    assert result.record["input_token"] == 5
    assert result.record["output_token"] == 3
    assert [chat["message"] for chat in result.record["chat_list"]] == ["hello"]
    assert "chat.created" in metrics.counters


def test_second_append_accumulates(accumulator, pg_engine):
    accumulator.append_chat("kim@example.com", "2024-05-01", [m("user", "m1")], 5, 3)
    result = accumulator.append_chat("kim@example.com", "2024-05-01", [m("assistant", "m2")], 2, 1)

    assert result.created is False
    assert result.record["input_token"] == 7
    assert result.record["output_token"] == 4
    assert [chat["message"] for chat in result.record["chat_list"]] == ["m1", "m2"]

    with Session(pg_engine) as session:
        assert len(session.exec(select(ChatRecord)).all()) == 1


def test_same_civil_day_shares_a_record(accumulator):
    first = accumulator.append_chat("kim@example.com", "2024-05-01T20:00:00Z", [], 1, 1)
    second = accumulator.append_chat("kim@example.com", "2024-05-02T08:00:00+09:00", [], 1, 1)

    assert first.created is True
    assert second.created is False
    assert second.record["id"] == first.record["id"]
    assert second.record["chat_date"] == "2024-05-02T00:00:00+09:00"


def test_different_users_and_days_are_separate(accumulator):
    a = accumulator.append_chat("a@example.com", "2024-05-01", [], 1, 1)
    b = accumulator.append_chat("b@example.com", "2024-05-01", [], 1, 1)
    c = accumulator.append_chat("a@example.com", "2024-05-02", [], 1, 1)
    assert len({a.record["id"], b.record["id"], c.record["id"]}) == 3
    assert all(result.created for result in (a, b, c))


def test_message_date_defaults_to_now_and_keeps_supplied(accumulator):
    result = accumulator.append_chat(
        "kim@example.com",
        "2024-05-01",
        [m("user", "timed", "2024-05-01T01:02:03Z"), m("assistant", "untimed")],
        1,
        1,
    )
    timed, untimed = result.record["chat_list"]
    assert timed["date"] == "2024-05-01T10:02:03+09:00"
    assert untimed["date"]


def test_zero_tokens_are_accepted(accumulator):
    result = accumulator.append_chat("kim@example.com", "2024-05-01", [m("user", "hi")], 0, 0)
    assert result.record["input_token"] == 0


@pytest.mark.parametrize("input_token,output_token", [(None, 1), (1, None), (-1, 1), (1, "3"), (True, 1)])
def test_invalid_tokens_are_rejected(accumulator, pg_engine, input_token, output_token):
    with pytest.raises(ValidationError):
        accumulator.append_chat("kim@example.com", "2024-05-01", [], input_token, output_token)

    with Session(pg_engine) as session:
        assert session.exec(select(ChatRecord)).all() == []


def test_bad_message_date_writes_nothing(accumulator, pg_engine):
    with pytest.raises(ValidationError):
        accumulator.append_chat("kim@example.com", "2024-05-01", [m("user", "x", "yesterday")], 1, 1)

    with Session(pg_engine) as session:
        assert session.exec(select(ChatRecord)).all() == []
        assert session.exec(select(ChatMessage)).all() == []


def test_missing_email_or_date(accumulator):
    with pytest.raises(ValidationError):
        accumulator.append_chat("", "2024-05-01", [], 1, 1)
    with pytest.raises(ValidationError):
        accumulator.append_chat("kim@example.com", "", [], 1, 1)
    with pytest.raises(ValidationError):
        accumulator.append_chat("kim@example.com", "2024-05-01", "hello", 1, 1)


def test_user_histories_newest_first(accumulator):
    accumulator.append_chat("kim@example.com", "2024-05-01", [m("user", "old")], 1, 1)
    accumulator.append_chat("kim@example.com", "2024-05-03", [m("user", "new")], 1, 1)
    accumulator.append_chat("lee@example.com", "2024-05-02", [m("user", "other")], 1, 1)

    histories = accumulator.get_user_histories("kim@example.com")
    assert [h["chat_date"][:10] for h in histories] == ["2024-05-03", "2024-05-01"]
    assert histories[0]["chat_list"][0]["message"] == "new"


def test_user_histories_not_found(accumulator):
    with pytest.raises(NotFoundError):
        accumulator.get_user_histories("nobody@example.com")


def test_concurrent_appends_to_one_day_lose_nothing(file_engine, normalizer, metrics):
    accumulator = ChatAccumulator(file_engine, normalizer, metrics)

    def append(n):
        return accumulator.append_chat("kim@example.com", "2024-05-01", [m("user", f"turn {n}")], 1, 2)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(append, range(20)))

    assert sum(result.created for result in results) == 1
    with Session(file_engine) as session:
        records = session.exec(select(ChatRecord)).all()
        assert len(records) == 1
        assert records[0].input_token == 20
        assert records[0].output_token == 40
        assert records[0].update_count == 20
        messages = session.exec(select(ChatMessage)).all()
        assert sorted(message.message for message in messages) == sorted(f"turn {n}" for n in range(20))
