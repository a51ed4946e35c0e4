

from typing import Optional

from pydantic import BaseModel, Field


class WebhookResponse(BaseModel):
    """Response body returned to the portal for every webhook call."""

    success: bool = Field(..., description="Whether the event was handled")
    ignored: Optional[bool] = Field(None, description="Event kind is not a lead creation")
    deduped: Optional[bool] = Field(None, description="Event id already attached to a deal")
    pipedrive_person_id: Optional[int] = Field(None, description="Pipedrive person id")
    pipedrive_deal_id: Optional[int] = Field(None, description="Pipedrive deal id")
    error: Optional[str] = Field(None, description="Error message on failure")


class PipelineResult(BaseModel):
    """Terminal outcome of one pipeline run."""

    status_code: int = Field(200, description="HTTP status to answer with")
    body: WebhookResponse

    def content(self) -> dict:
        """JSON body without unset optional keys."""
        return self.body.model_dump(exclude_none=True)
