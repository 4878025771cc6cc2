"""
Knowledge Base for SupportDesk Chat.

Embeds the customer's question with OpenAI and searches a Pinecone index for
support articles. Retrieval is best effort: every failure yields no context
so the chat flow is never broken by it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI
from pinecone import Pinecone

logger = logging.getLogger(__name__)

HISTORY_TURNS = 3


@dataclass
class KnowledgeEntry:
    """A support article stored in the index."""
    id: str
    title: str
    content: str
    category: str = ""
    score: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_snippet(self) -> str:
        return f"{self.title}:\n{self.content}"


class KnowledgeBase:
    """
    Pinecone-backed article search.

    Supports:
    - Similarity search with optional category filter
    - Article upsert and delete
    - Prompt context assembly from the recent conversation
    """

    def __init__(
        self,
        pinecone_api_key: str = "",
        index_name: str = "chatbot-knowledge-base",
        openai_api_key: Optional[str] = None,
        openai_base_url: Optional[str] = None,
        embed_model: str = "text-embedding-3-small",
        similarity_threshold: float = 0.0,
        top_k: int = 3,
    ):
        self.index_name = index_name
        self.embed_model = embed_model
        self.similarity_threshold = similarity_threshold
        self.top_k = top_k
        self._index = None
        self._embedder = None

        if not pinecone_api_key or not openai_api_key:
            logger.warning("Knowledge base disabled: Pinecone or OpenAI key missing")
            return

        try:
            self._index = Pinecone(api_key=pinecone_api_key).Index(index_name)
            self._embedder = AsyncOpenAI(api_key=openai_api_key, base_url=openai_base_url)
            logger.info(f"Knowledge base connected to index: {index_name}")
        except Exception as e:
            logger.error(f"Failed to initialize knowledge base: {e}")
            self._index = None
            self._embedder = None

    @property
    def enabled(self) -> bool:
        return self._index is not None and self._embedder is not None

    async def embed(self, text: str) -> List[float]:
        response = await self._embedder.embeddings.create(model=self.embed_model, input=text)
        return response.data[0].embedding

    async def search(
        self,
        query: str,
        limit: int = 5,
        category: Optional[str] = None,
    ) -> List[KnowledgeEntry]:
        """
        Search the index for articles similar to the query.

        Args:
            query: Free-text query
            limit: Maximum number of articles
            category: Restrict to one article category

        Returns:
            Matching articles above the similarity threshold
        """
        if not self.enabled:
            return []

        vector = await self.embed(query)
        response = await asyncio.to_thread(
            self._index.query,
            vector=vector,
            top_k=limit,
            filter={"category": category} if category else None,
            include_metadata=True,
        )

        entries = []
        for match in response.matches:
            if match.score < self.similarity_threshold:
                continue
            metadata = match.metadata or {}
            entries.append(KnowledgeEntry(
                id=match.id,
                title=metadata.get("title", ""),
                content=metadata.get("content", ""),
                category=metadata.get("category", ""),
                score=match.score,
                metadata=metadata,
            ))

        logger.debug(f"Knowledge search returned {len(entries)} articles")
        return entries

    async def upsert(self, entry: KnowledgeEntry) -> None:
        if not self.enabled:
            raise RuntimeError("Knowledge base is not configured")

        vector = await self.embed(f"{entry.title}\n\n{entry.content}")
        metadata = {
            **entry.metadata,
            "title": entry.title,
            "content": entry.content,
            "category": entry.category,
        }
        await asyncio.to_thread(self._index.upsert, vectors=[(entry.id, vector, metadata)])
        logger.info(f"Upserted knowledge article {entry.id}")

    async def delete(self, entry_id: str) -> None:
        if not self.enabled:
            raise RuntimeError("Knowledge base is not configured")
        await asyncio.to_thread(self._index.delete, ids=[entry_id])

    async def get_relevant_context(
        self,
        query: str,
        recent_history: Optional[List[str]] = None,
    ) -> List[str]:
        """Prompt snippets for a customer message; empty on any failure."""
        if not self.enabled:
            return []

        enhanced = " ".join([query, *(recent_history or [])[-HISTORY_TURNS:]])
        try:
            entries = await self.search(enhanced, limit=self.top_k)
        except Exception as e:
            logger.error(f"Failed to get relevant context: {e}")
            return []
        return [entry.as_snippet() for entry in entries]
