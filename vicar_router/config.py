from types import MappingProxyType
from typing import Mapping

from pydantic_settings import BaseSettings

from vicar_router.services.state_machine import QueueKey


class Settings(BaseSettings):
    # WhatsApp Cloud API
    verify_token: str = ""
    whatsapp_token: str = ""
    phone_number_id: str = ""
    whatsapp_api_url: str = "https://graph.facebook.com/v20.0"
    whatsapp_timeout_seconds: float = 10.0

    # PBX / chat-center OpenAPI
    pbx_base_url: str = "http://localhost:8088/openapi/v1.0"
    pbx_username: str = ""
    pbx_password: str = ""
    pbx_session_user_type: str = "channel_user"
    pbx_timeout_seconds: float = 10.0
    token_safety_margin_seconds: int = 60

    # Human queues in the PBX
    queue_branch_a_default: int = 0
    queue_branch_a_post_sale: int = 0
    queue_branch_b_default: int = 0
    queue_branch_b_post_sale: int = 0

    # In-memory conversation store
    conversation_ttl_seconds: int = 6 * 60 * 60
    conversation_max_users: int = 10_000
    conversation_sweep_interval_seconds: float = 300.0

    log_level: str = "INFO"
    debug: bool = False

    class Config:
        env_file = ".env"
        extra = "ignore"

    def effective_log_level(self) -> str:
        """DEBUG turns on verbose logging regardless of LOG_LEVEL."""
        return "DEBUG" if self.debug else self.log_level.upper()

    def queue_targets(self) -> Mapping[QueueKey, int]:
        """Read-only mapping from transfer trigger to PBX queue id."""
        return MappingProxyType(
            {
                QueueKey.BRANCH_A_DEFAULT: self.queue_branch_a_default,
                QueueKey.BRANCH_A_POST_SALE: self.queue_branch_a_post_sale,
                QueueKey.BRANCH_B_DEFAULT: self.queue_branch_b_default,
                QueueKey.BRANCH_B_POST_SALE: self.queue_branch_b_post_sale,
            }
        )


def get_settings() -> Settings:
    return Settings()
