import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PaymentMethodCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50, description="Codice univoco")
    name: str = Field(..., min_length=1, max_length=255, description="Nome visualizzato")


class PaymentMethodRead(BaseModel):
    id: uuid.UUID
    code: str
    name: str
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
