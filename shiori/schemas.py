import base64
from typing import Any, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field

ROLE_LABELS = {
    "leader": "班長",
    "camera": "カメラ係",
    "accountant": "お財布係",
    "navigator": "案内係",
    "driver": "運転係",
    "reservation": "予約係",
}
DEFAULT_ROLE_LABEL = "班員"

UNKNOWN_PLACE = "（場所不明）"
UNKNOWN_DAY = "日付不明"
NO_TIME = "—"

# ------- Normalized trip models -------
class Member(BaseModel):
    name: str
    role: Optional[str] = None          # raw tag as supplied, trimmed
    role_label: str = DEFAULT_ROLE_LABEL
    episode: Optional[str] = None

class BudgetDetail(BaseModel):
    name: str
    amount: Any

class BudgetCategory(BaseModel):
    title: str
    total: Any                          # kept as supplied for display
    details: List[BudgetDetail] = Field(default_factory=list)

class PhotoEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: Optional[str] = Field(None, alias="clientId")
    place_name: Any = Field(None, alias="placeName")
    date_time: Any = Field(None, alias="dateTime")

class Trip(BaseModel):
    start_date: Any = None
    end_date: Any = None
    hotels: List[str] = Field(default_factory=list)
    purpose: Optional[str] = None
    members: List[Member] = Field(default_factory=list)
    allowance: List[BudgetCategory] = Field(default_factory=list)
    photos: List[PhotoEvent] = Field(default_factory=list)

# ------- Derived view models -------
class ItineraryEvent(BaseModel):
    client_id: Optional[str] = None
    place_name: str
    day: Optional[str] = None
    display_time: str = NO_TIME
    sort_timestamp: Optional[float] = None
    upload_index: int

class DayGroup(BaseModel):
    label: str
    events: List[ItineraryEvent] = Field(default_factory=list)

class BudgetRow(BaseModel):
    title: str
    detail_lines: List[str] = Field(default_factory=list)
    total_display: str

class BudgetSummary(BaseModel):
    rows: List[BudgetRow] = Field(default_factory=list)
    grand_total: float = 0.0
    grand_total_display: str = "0"

# ------- Uploads -------
class ImageUpload(BaseModel):
    filename: Optional[str] = None
    content_type: str = "image/jpeg"
    data: bytes

    @property
    def data_uri(self) -> str:
        return f"data:{self.content_type};base64,{base64.b64encode(self.data).decode('ascii')}"

# ------- Receipt extraction -------
class ReceiptItem(BaseModel):
    name: str
    amount: Union[int, float]

class ReceiptExtraction(BaseModel):
    items: List[ReceiptItem]
    store_name: Optional[str] = Field(None, serialization_alias="storeName")

RenderStageName = Literal[
    "received",
    "itinerary-inferred",
    "cover-attempted",
    "narrative-generated",
    "document-built",
    "render-admitted",
    "render-complete",
]

class ShioriResult(BaseModel):
    pdf: bytes
    html: str
    cover_used: bool = False
    stages: List[RenderStageName] = Field(default_factory=list)
    timings: List[Tuple[str, float]] = Field(default_factory=list)
