from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class CloudText(BaseModel):
    body: Optional[str] = None


class CloudMessage(BaseModel):
    id: Optional[str] = None
    from_address: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("from", "from_address"),
    )
    timestamp: Optional[str] = None
    type: Optional[str] = "text"
    text: Optional[CloudText] = None


class CloudContactProfile(BaseModel):
    name: Optional[str] = None


class CloudContact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[CloudContactProfile] = None


class CloudMetadata(BaseModel):
    display_phone_number: Optional[str] = None
    phone_number_id: Optional[str] = None


class CloudChangeValue(BaseModel):
    messaging_product: Optional[str] = None
    metadata: Optional[CloudMetadata] = None
    contacts: list[CloudContact] = []
    messages: list[CloudMessage] = []
    statuses: list[dict] = []


class CloudChange(BaseModel):
    field: Optional[str] = None
    value: CloudChangeValue


class CloudEntry(BaseModel):
    id: Optional[str] = None
    changes: list[CloudChange] = []


class CloudWebhook(BaseModel):
    object: str
    entry: list[CloudEntry] = []


class WebhookResponse(BaseModel):
    success: bool
    message: str
    accepted: int = 0
