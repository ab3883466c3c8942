from pydantic import BaseModel
from typing import Dict, Optional
from storebot.models.flow_state import FlowKind
from storebot.models.ledger import Currency

class ChatState(BaseModel):
    # None until an admin picks the request up
    user_id: Optional[str] = None
    username: Optional[str] = None
    admin_messages: Dict[str, int] = {}
    calling: bool = False

    @property
    def paired(self) -> bool:
        return self.user_id is not None

class SumAddState(BaseModel):
    message_id: int
    wal_num: str = ""
    client_id: Optional[str] = None
    currency: Optional[Currency] = None
    sum: Optional[float] = None

class TransferState(BaseModel):
    message_id: int
    receiver_id: Optional[str] = None
    sender_wal_num: str = ""
    receiver_wal_num: str = ""
    amount: Optional[float] = None
    currency: Optional[Currency] = None

class CheckState(BaseModel):
    message_id: int

class SignupState(BaseModel):
    message_id: int
    nick: Optional[str] = None

class ReasonState(BaseModel):
    order_id: int
    client_id: str
    admin_messages: Dict[str, int] = {}
    client_message_id: Optional[int] = None

class BroadcastState(BaseModel):
    message_id: int

STATE_MODELS = {
    FlowKind.CHAT: ChatState,
    FlowKind.SUMADD: SumAddState,
    FlowKind.TRANSFER: TransferState,
    FlowKind.CHECK: CheckState,
    FlowKind.SIGNUP: SignupState,
    FlowKind.REASON: ReasonState,
    FlowKind.BROADCAST: BroadcastState,
}

KIND_OF_MODEL = {model: kind for kind, model in STATE_MODELS.items()}
