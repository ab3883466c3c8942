from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

class TelegramUser(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    first_name: str = ""
    username: Optional[str] = None

class Chat(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    type: str = "private"

class WebAppData(BaseModel):
    data: str
    button_text: str = ""

class Message(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    message_id: int
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    chat: Chat
    text: Optional[str] = None
    caption: Optional[str] = None
    web_app_data: Optional[WebAppData] = None

class CallbackQuery(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    from_user: TelegramUser = Field(alias="from")
    message: Optional[Message] = None
    data: Optional[str] = None

class Update(BaseModel):
    model_config = ConfigDict(extra="allow")

    update_id: int
    message: Optional[Message] = None
    callback_query: Optional[CallbackQuery] = None
