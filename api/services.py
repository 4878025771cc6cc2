"""
Service initialization and dependency injection for SupportDesk Chat API.

Creates and manages all service instances used by the API.
"""

import logging
from typing import Optional

from api.middleware.auth import StaffAuthenticator, hash_password
from api.realtime.connection_manager import ConnectionManager
from api.realtime.coordinator import Coordinator
from config.settings import Settings, get_settings
from database.store import InMemoryRecordStore, RecordStore
from feedback import FeedbackStore
from handoff import (
    AssignmentLedger, AutoAssigner, ChatQueue, EscalationDetector, Priority,
    StaffDirectory, StaffRole,
)
from llm.conversation_store import RecordSessionStore
from llm.prompt_templates import PromptTemplates
from llm.responder import AIResponder, Responder
from retrieval.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

DEMO_STAFF = [
    {
        "email": "admin@example.com",
        "password": "admin123",
        "name": "Admin User",
        "role": StaffRole.ADMIN,
        "max_concurrent_chats": 10,
    },
    {
        "email": "agent@example.com",
        "password": "agent123",
        "name": "Support Agent",
        "role": StaffRole.AGENT,
        "max_concurrent_chats": 5,
    },
]


class Services:
    """Container for all application services."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.store: Optional[RecordStore] = None
        self.database_connected = False
        self.directory: Optional[StaffDirectory] = None
        self.queue: Optional[ChatQueue] = None
        self.ledger: Optional[AssignmentLedger] = None
        self.assigner: Optional[AutoAssigner] = None
        self.sessions: Optional[RecordSessionStore] = None
        self.responder: Optional[Responder] = None
        self.knowledge: Optional[KnowledgeBase] = None
        self.connections: Optional[ConnectionManager] = None
        self.authenticator: Optional[StaffAuthenticator] = None
        self.detector: Optional[EscalationDetector] = None
        self.coordinator: Optional[Coordinator] = None
        self.feedback: Optional[FeedbackStore] = None
        self._initialized = False

    async def initialize(
        self,
        settings: Optional[Settings] = None,
        responder: Optional[Responder] = None,
        knowledge: Optional[KnowledgeBase] = None,
    ):
        """
        Initialize all services.

        `responder` and `knowledge` replace the OpenAI/Pinecone adapters
        when given.
        """
        if self._initialized:
            return

        self.settings = settings or get_settings()
        logger.info(f"Initializing services for {self.settings.brand_name}")

        await self._init_store()
        self._init_handoff()
        self._init_ai(responder, knowledge)
        self._init_realtime()
        if self.settings.seed_demo_staff:
            await self._seed_demo_staff()

        self._initialized = True
        logger.info("All services initialized successfully")

    async def _init_store(self):
        """SQL record store when DATABASE_URL is set, in-memory otherwise."""
        s = self.settings
        if s.database_url:
            try:
                from database.session import init_db
                from database.sql_store import SqlRecordStore

                session_factory = await init_db(s.database_url)
                self.store = SqlRecordStore(session_factory)
                self.database_connected = True
                logger.info("Using SQL record store")
                return
            except Exception as e:
                logger.warning(f"Database init failed (running in memory): {e}")

        self.store = InMemoryRecordStore()
        logger.info("Using in-memory record store")

    def _init_handoff(self):
        s = self.settings
        self.directory = StaffDirectory(self.store)
        self.queue = ChatQueue(self.store)
        self.ledger = AssignmentLedger(self.store, self.directory, self.queue)
        self.assigner = AutoAssigner(self.queue, self.directory, self.ledger)
        self.sessions = RecordSessionStore(self.store)
        self.feedback = FeedbackStore(self.store, self.sessions)
        self.detector = EscalationDetector(
            confidence_threshold=s.low_confidence_threshold,
            confidence_streak=s.low_confidence_streak,
        )
        self.authenticator = StaffAuthenticator(
            self.directory,
            self.store,
            secret=s.jwt_secret_key,
            algorithm=s.jwt_algorithm,
            expire_minutes=s.jwt_expire_minutes,
        )

    def _init_ai(self, responder: Optional[Responder], knowledge: Optional[KnowledgeBase]):
        s = self.settings
        self.responder = responder or AIResponder(
            api_key=s.openai_api_key,
            model_id=s.openai_llm_model,
            base_url=s.openai_base_url,
            max_tokens=s.max_tokens,
            temperature=s.temperature,
            prompts=PromptTemplates(s.brand_name, s.custom_system_prompt),
        )
        self.knowledge = knowledge or KnowledgeBase(
            pinecone_api_key=s.pinecone_api_key,
            index_name=s.pinecone_index_name,
            openai_api_key=s.openai_api_key,
            openai_base_url=s.openai_base_url,
            embed_model=s.openai_embed_model,
            similarity_threshold=s.similarity_threshold,
            top_k=s.top_k,
        )

    def _init_realtime(self):
        s = self.settings
        self.connections = ConnectionManager()
        self.coordinator = Coordinator(
            directory=self.directory,
            queue=self.queue,
            ledger=self.ledger,
            assigner=self.assigner,
            sessions=self.sessions,
            responder=self.responder,
            knowledge=self.knowledge,
            connections=self.connections,
            authenticator=self.authenticator,
            detector=self.detector,
            ai_timeout_seconds=s.ai_timeout_seconds,
            escalate_on_ai_failure=s.escalate_on_ai_failure,
            default_priority=Priority(s.default_priority),
            dequeue_on_customer_disconnect=s.dequeue_on_customer_disconnect,
        )

    async def _seed_demo_staff(self):
        for member in DEMO_STAFF:
            if await self.directory.find_by_email(member["email"]):
                continue
            await self.directory.provision(
                email=member["email"],
                name=member["name"],
                password_hash=hash_password(member["password"]),
                role=member["role"],
                max_concurrent_chats=member["max_concurrent_chats"],
            )
        logger.info("Demo staff accounts ready")

    async def shutdown(self):
        if self.database_connected:
            from database.session import close_db
            await close_db()
        self._initialized = False

    @property
    def is_ready(self) -> bool:
        return self._initialized and self.coordinator is not None

    def health(self) -> dict:
        """Return health status of all services."""
        return {
            "initialized": self._initialized,
            "database": self.database_connected,
            "ai": bool(self.settings and self.settings.ai_enabled),
            "knowledge_base": bool(self.knowledge and self.knowledge.enabled),
            "connections": self.connections.active_count if self.connections else 0,
        }


# Singleton
_services = Services()


def get_services() -> Services:
    """Get the global services instance."""
    return _services


async def initialize_services(
    settings: Optional[Settings] = None,
    responder: Optional[Responder] = None,
    knowledge: Optional[KnowledgeBase] = None,
) -> Services:
    """Build a fresh services instance (called at startup)."""
    global _services
    _services = Services()
    await _services.initialize(settings, responder, knowledge)
    return _services


async def shutdown_services():
    await _services.shutdown()
