from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from webvault.storage.tenant_store import DEFAULT_TENANT_ID


class TenantRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chat_id: str = Field(default=DEFAULT_TENANT_ID, alias="chatId")

    @field_validator("chat_id", mode="before")
    @classmethod
    def _coerce_chat_id(cls, value: Any) -> str:
        # the UI sends numeric conversation ids
        if value is None:
            return DEFAULT_TENANT_ID
        return str(value)


class CrawlRequest(TenantRequest):
    urls: List[str]


class PreviewRequest(BaseModel):
    urls: List[str]
    query: Optional[str] = None


class SavePageRequest(TenantRequest):
    url: str = Field(min_length=1)
    content: str = Field(min_length=1)
    title: Optional[str] = None


class FilterRequest(TenantRequest):
    include: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)
    limit: Optional[int] = None
