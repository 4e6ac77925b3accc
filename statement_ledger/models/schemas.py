from typing import Annotated, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire format is camelCase (provider JSON and API), attributes are snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AccountInfo(CamelModel):
    account_name: str = ""
    account_number: str = ""
    bank_name: str = ""
    branch: str = ""

    @field_validator("account_name", "account_number", "bank_name", "branch", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return "" if v is None else v


class Transaction(CamelModel):
    transaction_code: str = ""
    date: str = ""  # DD/MM/YYYY
    description: str = ""
    debit: float = Field(0, ge=0)
    credit: float = Field(0, ge=0)
    fee: float = Field(0, ge=0)
    vat: float = Field(0, ge=0)

    @field_validator("transaction_code", "date", "description", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return "" if v is None else v

    @field_validator("debit", "credit", "fee", "vat", mode="before")
    @classmethod
    def _none_as_zero(cls, v):
        return 0 if v is None else v


class StatementReport(CamelModel):
    opening_balance: float = 0
    ending_balance: float = 0  # 0 means "not extracted"
    account_info: AccountInfo = Field(default_factory=AccountInfo)
    transactions: list[Transaction]

    @field_validator("opening_balance", "ending_balance", mode="before")
    @classmethod
    def _none_as_zero(cls, v):
        return 0 if v is None else v

    @field_validator("account_info", mode="before")
    @classmethod
    def _none_as_blank_account(cls, v):
        return {} if v is None else v


NumericField = Literal["debit", "credit", "fee", "vat"]
TextField = Literal["transactionCode", "date", "description"]

NUMERIC_FIELDS = get_args(NumericField)


class NumericFieldUpdate(BaseModel):
    kind: Literal["numeric"] = "numeric"
    index: int = Field(ge=0)
    field: NumericField
    value: float = Field(ge=0)


class TextFieldUpdate(BaseModel):
    kind: Literal["text"] = "text"
    index: int = Field(ge=0)
    field: TextField
    value: str


FieldUpdate = Annotated[Union[NumericFieldUpdate, TextFieldUpdate], Field(discriminator="kind")]


class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    content: str


class UpdatePayload(CamelModel):
    index: int = Field(ge=0)
    field: str
    new_value: float


class AddPayload(CamelModel):
    transaction_code: Optional[str] = None
    date: Optional[str] = None
    description: Optional[str] = None
    debit: Optional[float] = None
    credit: Optional[float] = None
    fee: Optional[float] = None
    vat: Optional[float] = None


ChatAction = Literal["update", "undo", "add", "query"]


class ChatMutationDirective(CamelModel):
    response_text: str = ""
    action: ChatAction
    update: Optional[UpdatePayload] = None
    add: Optional[AddPayload] = None
    confirmation_required: Optional[bool] = None


class ImagePart(CamelModel):
    mime_type: str
    data: str  # base64


class FileBlob(CamelModel):
    filename: str
    media_type: str
    content: bytes


class ExtractedContent(CamelModel):
    text: Optional[str] = None
    images: list[ImagePart] = Field(default_factory=list)


class LedgerRow(CamelModel):
    index: int
    transaction: Transaction
    balance: float


class LedgerTotals(CamelModel):
    debit: float = 0
    credit: float = 0
    fee: float = 0
    vat: float = 0


class BalanceMismatch(CamelModel):
    computed: float
    claimed: float
    difference: float
    message: str


class Reconciliation(CamelModel):
    opening_balance: float
    rows: list[LedgerRow]
    totals: LedgerTotals
    computed_ending_balance: float
    mismatch: Optional[BalanceMismatch] = None


# --- HTTP surface ---


class SessionResponse(CamelModel):
    session_id: str


class ExtractResponse(CamelModel):
    raw_text: str
    file_name: str
    image_count: int


class RawTextRequest(CamelModel):
    text: str
    file_name: Optional[str] = None


class OpeningBalanceRequest(CamelModel):
    value: float


class LedgerResponse(CamelModel):
    report: StatementReport
    reconciliation: Reconciliation
    history_length: int


class ChatRequest(CamelModel):
    message: str
    image: Optional[ImagePart] = None


class ChatResponse(CamelModel):
    directive: ChatMutationDirective
    pending: bool
    ledger: Optional[LedgerResponse] = None


class FieldUpdateRequest(CamelModel):
    update: FieldUpdate
