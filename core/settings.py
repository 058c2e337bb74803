import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import ConfigDict
from pydantic_settings import BaseSettings

# Load .env file automatically
load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_POOL_RECYCLE: int = 3600

    # PayPal: one mode flag selects sandbox vs live for every gateway
    PAYPAL_MODE: Literal["test", "live"] = "test"
    PAYPAL_HTTP_TIMEOUT: float = 30.0
    PAYPAL_IPN_TIMEOUT: float = 10.0

    # Express Checkout (NVP)
    PAYPAL_API_USERNAME: str = ""
    PAYPAL_API_PASSWORD: str = ""
    PAYPAL_SIGNATURE: str = ""
    PAYPAL_SOLUTION_TYPE: Literal["Mark", "SoleLogin", "SoleBilling"] = "Mark"
    PAYPAL_REFERENCE_TRANSACTIONS: bool = False
    PAYPAL_BA_DESC: str = ""
    PAYPAL_SHIPPING_ENABLED: bool = False
    PAYPAL_SEND_SHIPPING_ADDRESS: bool = False

    # PaymentsPro (REST)
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_SECRET: str = ""

    # App settings
    APP_NAME: str = "PayPal Commerce Gateway"
    DEBUG: bool = False
    ENVIRONMENT: Literal["development", "test", "production"] = "development"

    # Observability (Optional)
    OTEL_EXPORTER_OTLP_ENDPOINT: str = "http://localhost:4317"
    OTEL_SERVICE_NAME: str = "paypal-commerce-gateway"

    model_config = ConfigDict(env_file=".env", case_sensitive=True)

    def __init__(self, **kwargs):
        # Check for DATABASE_URL before calling parent constructor
        if not kwargs.get("DATABASE_URL") and not os.getenv("DATABASE_URL"):
            raise RuntimeError(
                "DATABASE_URL not set; create .env or export the variable"
            )
        super().__init__(**kwargs)

    def express_checkout_config(self):
        from payments.express_checkout import ExpressCheckoutConfig

        return ExpressCheckoutConfig(
            gateway_id="paypal_express_checkout",
            mode=self.PAYPAL_MODE,
            http_timeout=self.PAYPAL_HTTP_TIMEOUT,
            api_username=self.PAYPAL_API_USERNAME,
            api_password=self.PAYPAL_API_PASSWORD,
            signature=self.PAYPAL_SIGNATURE,
            solution_type=self.PAYPAL_SOLUTION_TYPE,
            reference_transactions=self.PAYPAL_REFERENCE_TRANSACTIONS,
            ba_desc=self.PAYPAL_BA_DESC,
            shipping_enabled=self.PAYPAL_SHIPPING_ENABLED,
            send_shipping_address=self.PAYPAL_SEND_SHIPPING_ADDRESS,
        )

    def payments_pro_config(self):
        from payments.payments_pro import PaymentsProConfig

        return PaymentsProConfig(
            gateway_id="paypal_payments_pro",
            mode=self.PAYPAL_MODE,
            http_timeout=self.PAYPAL_HTTP_TIMEOUT,
            client_id=self.PAYPAL_CLIENT_ID,
            client_secret=self.PAYPAL_SECRET,
        )

    def payments_standard_config(self):
        from payments.gateway import GatewayConfig

        return GatewayConfig(
            gateway_id="paypal_payments_standard",
            mode=self.PAYPAL_MODE,
            http_timeout=self.PAYPAL_HTTP_TIMEOUT,
        )
