"""Business configuration for the coordination core."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from core.models.payment import PaymentMethod


class CoreConfig(BaseModel):
    """Billing and workflow policy knobs."""

    tax_rate_bps: int = Field(default=0, ge=0, le=10000)  # 1000 = 10%
    default_payment_method: PaymentMethod = PaymentMethod.CASH
    default_cancel_reason: str = Field(default="No reason provided", min_length=1)
    invoice_prefix: str = Field(default="INV", min_length=1, max_length=10)
    list_limit: int = Field(default=50, ge=1, le=500)

    @classmethod
    def from_env(cls) -> "CoreConfig":
        """
        Build config from FIXFLOW_* environment variables.

        Loads .env first. Unset variables fall back to defaults.
        Raises pydantic.ValidationError on out-of-range values.
        """
        load_dotenv()

        values = {}
        env_map = {
            "tax_rate_bps": "FIXFLOW_TAX_RATE_BPS",
            "default_payment_method": "FIXFLOW_DEFAULT_PAYMENT_METHOD",
            "default_cancel_reason": "FIXFLOW_DEFAULT_CANCEL_REASON",
            "invoice_prefix": "FIXFLOW_INVOICE_PREFIX",
            "list_limit": "FIXFLOW_LIST_LIMIT",
        }
        for field_name, env_var in env_map.items():
            raw = os.getenv(env_var)
            if raw is not None and raw != "":
                values[field_name] = raw

        return cls.model_validate(values)
