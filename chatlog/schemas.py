from typing import List, Optional

from pydantic import BaseModel, Field, StrictInt


class ChatMessageIn(BaseModel):
    sender: str
    message: str
    date: Optional[str] = Field(default=None, description="ISO-8601 instant, defaults to now")


class RegistUserRequest(BaseModel):
    email: str
    user_name: str
    license_number: Optional[str] = ""


class UpdateChatRequest(BaseModel):
    email: str
    chat_date: str
    chat_list: List[ChatMessageIn]
    input_token: Optional[StrictInt] = None
    output_token: Optional[StrictInt] = None
