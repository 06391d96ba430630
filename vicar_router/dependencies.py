from dataclasses import dataclass

from fastapi import Request

from vicar_router.config import Settings
from vicar_router.services.conversation_store import ConversationStore
from vicar_router.services.flow_service import FlowOrchestrator
from vicar_router.services.pbx_client import PbxClient
from vicar_router.services.session_service import SessionLocator, SessionTransferClient
from vicar_router.services.token_service import TokenManager
from vicar_router.services.whatsapp_service import WhatsAppService


@dataclass
class Services:
    settings: Settings
    store: ConversationStore
    tokens: TokenManager
    orchestrator: FlowOrchestrator
    whatsapp: WhatsAppService


def build_services(settings: Settings) -> Services:
    """Wire the process-wide objects for one application instance."""
    store = ConversationStore(
        ttl_seconds=settings.conversation_ttl_seconds,
        max_users=settings.conversation_max_users,
    )
    pbx = PbxClient(settings.pbx_base_url, timeout=settings.pbx_timeout_seconds)
    tokens = TokenManager(
        pbx,
        settings.pbx_username,
        settings.pbx_password,
        safety_margin_seconds=settings.token_safety_margin_seconds,
    )
    orchestrator = FlowOrchestrator(
        store=store,
        locator=SessionLocator(pbx, tokens, user_type=settings.pbx_session_user_type),
        transfers=SessionTransferClient(pbx, tokens),
        queue_targets=settings.queue_targets(),
    )
    whatsapp = WhatsAppService(
        settings.whatsapp_token,
        settings.phone_number_id,
        api_url=settings.whatsapp_api_url,
        timeout=settings.whatsapp_timeout_seconds,
    )
    return Services(settings=settings, store=store, tokens=tokens, orchestrator=orchestrator, whatsapp=whatsapp)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    return get_services(request).settings


def get_flow_orchestrator(request: Request) -> FlowOrchestrator:
    return get_services(request).orchestrator


def get_whatsapp_service(request: Request) -> WhatsAppService:
    return get_services(request).whatsapp
