"""
Service initialization and dependency injection for the Carrera Cars lead bot API.

Creates and manages all service instances used by the API.
"""

import logging
from typing import Optional

from config.settings import get_settings, Settings
from funnel.followups import FollowUpService
from funnel.state_machine import FunnelStateMachine
from llm.orchestrator import ConversationOrchestrator
from llm.providers import BedrockProvider, OpenAIProvider, GenerationProvider
from retrieval.context_builder import ContextBuilder
from retrieval.embedder import EmbeddingService, EmbeddingConfig, EmbeddingProvider
from retrieval.knowledge_retriever import KnowledgeIndexer, KnowledgeRetriever
from retrieval.pinecone_client import PineconeClient, PineconeConfig
from .channels.email import EmailRouter, SendGridEmail, SESEmail
from .channels.facebook import FacebookLeadAdsClient
from .channels.whatsapp import MetaCloudWhatsApp
from .handoff.notifier import EscalationNotifier
from .intake.facebook import FacebookLeadIntake
from .intake.whatsapp import WhatsAppIntake

logger = logging.getLogger(__name__)


class Services:
    """Container for all application services."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.embedding_service: Optional[EmbeddingService] = None
        self.pinecone_client: Optional[PineconeClient] = None
        self.retriever: Optional[KnowledgeRetriever] = None
        self.indexer: Optional[KnowledgeIndexer] = None
        self.generator: Optional[GenerationProvider] = None
        self.whatsapp: Optional[MetaCloudWhatsApp] = None
        self.notifier: Optional[EscalationNotifier] = None
        self.orchestrator: Optional[ConversationOrchestrator] = None
        self.whatsapp_intake: Optional[WhatsAppIntake] = None
        self.facebook_intake: Optional[FacebookLeadIntake] = None
        self.follow_up_service: Optional[FollowUpService] = None
        self._initialized = False

    def initialize(self):
        """Initialize all services. Missing providers leave the API in degraded mode."""
        if self._initialized:
            return

        self.settings = get_settings()
        logger.info(f"Initializing services with provider: {self.settings.llm_provider}")

        for step in (
            self._init_embedding,
            self._init_pinecone,
            self._init_generation,
            self._init_channels,
        ):
            try:
                step()
            except Exception as e:
                logger.error(f"{step.__name__} failed: {e}")

        self._init_orchestrator()
        self._init_intake()
        self._initialized = True
        logger.info("Services initialized" if self.is_ready else "API starting in degraded mode")

    def _init_embedding(self):
        s = self.settings

        if s.is_openai:
            provider = EmbeddingProvider.OPENAI
            model_id = s.openai_embed_model
        else:
            provider = EmbeddingProvider.BEDROCK_TITAN
            model_id = s.bedrock_embed_model_id

        config = EmbeddingConfig(
            provider=provider,
            model_id=model_id,
            aws_region=s.aws_region,
            openai_api_key=s.openai_api_key,
        )
        self.embedding_service = EmbeddingService(config, cache_size=s.embedding_cache_size)
        logger.info(f"Embedding service ready: {provider.value}")

    def _init_pinecone(self):
        s = self.settings

        if not s.pinecone_api_key:
            logger.warning("PINECONE_API_KEY not set, retrieval disabled")
            return

        config = PineconeConfig(
            api_key=s.pinecone_api_key,
            index_name=s.pinecone_index_name,
            cloud=s.pinecone_cloud,
            region=s.pinecone_region,
            dimension=self.embedding_service.get_dimension() if self.embedding_service else 1024,
        )
        self.pinecone_client = PineconeClient(config)
        self.retriever = KnowledgeRetriever(self.pinecone_client, top_k=s.retrieval_top_k)
        if self.embedding_service:
            self.indexer = KnowledgeIndexer(self.embedding_service, self.pinecone_client)
        logger.info("Pinecone client ready")

    def _init_generation(self):
        s = self.settings
        if s.is_openai:
            self.generator = OpenAIProvider(
                api_key=s.openai_api_key,
                model_id=s.openai_llm_model,
                max_tokens=s.max_tokens,
                temperature=s.temperature,
            )
        else:
            self.generator = BedrockProvider(
                model_id=s.bedrock_llm_model_id,
                region=s.aws_region,
                max_tokens=s.max_tokens,
                temperature=s.temperature,
            )

    def _init_channels(self):
        s = self.settings
        self.whatsapp = MetaCloudWhatsApp(
            api_token=s.whatsapp_access_token,
            phone_number_id=s.whatsapp_phone_number_id,
            api_version=s.whatsapp_api_version,
        )

        primary = SendGridEmail(s.sendgrid_api_key, s.email_from, s.brand_name) if s.sendgrid_api_key else None
        fallback = SESEmail(region=s.aws_region, from_email=s.email_from) if s.ses_enabled else None
        self.notifier = EscalationNotifier(EmailRouter(primary, fallback), s.manager_email)

    def _init_orchestrator(self):
        s = self.settings
        self.orchestrator = ConversationOrchestrator(
            embedding_service=self.embedding_service,
            retriever=self.retriever,
            context_builder=ContextBuilder(),
            generator=self.generator,
            transport=self.whatsapp,
            notifier=self.notifier,
            state_machine=FunnelStateMachine(s.escalation_follow_up_hours),
            history_limit=s.history_limit,
            typing_delay_per_char=s.typing_delay_per_char,
            typing_delay_min=s.typing_delay_min,
            typing_delay_max=s.typing_delay_max,
            follow_up_threshold_hours=s.follow_up_threshold_hours,
            brand_name=s.brand_name,
            agent_name=s.agent_name,
            default_tenant_id=s.default_tenant_id,
            dedupe_inbound=s.dedupe_inbound_messages,
        )
        self.follow_up_service = FollowUpService(
            self.orchestrator,
            threshold_hours=s.follow_up_threshold_hours,
            max_follow_ups=s.max_follow_ups,
        )
        logger.info("Conversation orchestrator ready")

    def _init_intake(self):
        s = self.settings
        self.whatsapp_intake = WhatsAppIntake(
            verify_token=s.whatsapp_webhook_verify_token,
            orchestrator=self.orchestrator,
            welcome_enabled=s.welcome_message_enabled,
        )
        self.facebook_intake = FacebookLeadIntake(
            verify_token=s.facebook_webhook_verify_token,
            client=FacebookLeadAdsClient(s.facebook_access_token),
            orchestrator=self.orchestrator,
            welcome_enabled=s.welcome_message_enabled,
        )

    def get_intake(self, channel: str):
        return {
            "whatsapp": self.whatsapp_intake,
            "facebook": self.facebook_intake,
        }.get(channel)

    @property
    def is_ready(self) -> bool:
        return (
            self._initialized
            and self.orchestrator is not None
            and self.generator is not None
            and self.whatsapp is not None
        )

    def health(self) -> dict:
        """Return health status of all services."""
        return {
            "initialized": self._initialized,
            "embedding": self.embedding_service is not None,
            "pinecone": self.pinecone_client is not None,
            "generation": self.generator is not None,
            "whatsapp": self.whatsapp is not None,
            "orchestrator": self.orchestrator is not None,
            "notifier_running": bool(self.notifier and self.notifier.running),
        }


# Singleton
_services = Services()


def get_services() -> Services:
    """Get the global services instance."""
    return _services


def initialize_services():
    """Initialize all services (called at startup)."""
    _services.initialize()
