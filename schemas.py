from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional


class ShopRecord(BaseModel):
    """
    Installed shop, one entry per domain in the shops file.
    Stored with camelCase keys: {"accessToken", "installedAt", "chargeId", "billingActive"}
    """
    model_config = ConfigDict(populate_by_name=True)

    access_token: Optional[str] = Field(None, alias="accessToken", description="Offline Admin API access token")
    installed_at: Optional[str] = Field(None, alias="installedAt", description="ISO-8601 UTC install time")
    charge_id: Optional[int] = Field(None, alias="chargeId", description="Recurring application charge id")
    billing_active: bool = Field(False, alias="billingActive")

    @model_validator(mode="after")
    def _billing_needs_charge_and_token(self):
        if self.billing_active and (self.charge_id is None or not self.access_token):
            raise ValueError("billingActive requires chargeId and accessToken")
        return self


class PendingAuthState(BaseModel):
    """
    OAuth anti-forgery state issued by /auth and consumed by /auth/callback.
    """
    model_config = ConfigDict(populate_by_name=True)

    shop: str
    created_at: float = Field(..., alias="createdAt", description="Epoch seconds")


class InstalledShop(BaseModel):
    shop: str
    access_token: str
