from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

class UserProfile(SQLModel, table=True):
    __tablename__ = "user_info"

    email: str = Field(primary_key=True)
    user_name: str
    license_number: str = Field(default="")

class ChatRecord(SQLModel, table=True):
    __tablename__ = "chat_history"
    __table_args__ = (UniqueConstraint("email", "chat_date", name="uq_chat_history_email_day"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True)
    chat_date: datetime = Field(index=True, sa_type=DateTime(timezone=True)) # utc start of the civil day
    input_token: int = Field(default=0)
    output_token: int = Field(default=0)
    update_count: int = Field(default=1) # number of appends applied, 1 on insert

class ChatMessage(SQLModel, table=True):
    __tablename__ = "chat_message"

    id: Optional[int] = Field(default=None, primary_key=True) # append order within a record
    chat_id: int = Field(foreign_key="chat_history.id", index=True)
    sender: str
    date: datetime = Field(sa_type=DateTime(timezone=True)) # utc
    message: str
