"""Knowledge-base question answering with conversational context."""

from __future__ import annotations

import logging
from time import perf_counter

from rolerag.chat.schemas import Answer
from rolerag.chat.schemas import ChatRecord
from rolerag.chat.schemas import FragmentSummary
from rolerag.config import LLMConfig
from rolerag.engine.hybrid import HybridRetrievalEngine
from rolerag.engine.llm_adapters import LLMAdapter
from rolerag.engine.prompt_builder import build_qa_prompt
from rolerag.memory.store import ConversationContextManager
from rolerag.observability import track_latency
from rolerag.store.protocols import RecordStore

logger = logging.getLogger(__name__)

NO_INFORMATION_ANSWER = (
    "Sorry, no relevant information was found in your knowledge base."
)
DEGRADED_ANSWER = (
    "Sorry, something went wrong while processing your question. "
    "Please try again later."
)
MAX_FRAGMENTS = 5


class QuestionAnswerService:
    """Answers questions grounded in one knowledge base.

    Upstream failures (retrieval, model, persistence) never reach the
    caller: they are logged and a fixed apology is returned instead.
    """

    def __init__(
        self,
        retrieval: HybridRetrievalEngine,
        llm: LLMAdapter,
        context: ConversationContextManager,
        store: RecordStore,
        *,
        llm_config: LLMConfig | None = None,
    ) -> None:
        self._retrieval = retrieval
        self._llm = llm
        self._context = context
        self._store = store
        self._llm_config = llm_config or LLMConfig()

    async def ask_question(
        self,
        question: str,
        knowledge_base_id: str,
        owner_id: str,
        session_id: str | None = None,
    ) -> Answer:
        async with track_latency("qa.ask_question"):
            session_id = await self._get_or_create_session(
                session_id, owner_id, knowledge_base_id
            )
            try:
                history = await self._context.render_history(session_id)
                fragments = (
                    await self._retrieval.hybrid_search(question, knowledge_base_id)
                )[:MAX_FRAGMENTS]

                if not fragments:
                    answer = Answer(
                        session_id=session_id, answer=NO_INFORMATION_ANSWER
                    )
                    await self._record(question, answer, owner_id, knowledge_base_id)
                    return answer

                context = "\n\n".join(fragment.content for fragment in fragments)
                prompt = build_qa_prompt(context, question, history)

                start = perf_counter()
                reply = await self._llm.complete(
                    prompt,
                    temperature=self._llm_config.temperature,
                    max_tokens=self._llm_config.max_tokens,
                    timeout_seconds=self._llm_config.timeout_seconds,
                )
                elapsed_ms = int((perf_counter() - start) * 1000)
            except Exception:
                logger.exception(
                    "Question answering failed for knowledge base %s",
                    knowledge_base_id,
                )
                return Answer(
                    session_id=session_id, answer=DEGRADED_ANSWER, degraded=True
                )

            answer = Answer(
                session_id=session_id,
                answer=reply,
                fragments=[FragmentSummary.from_candidate(f) for f in fragments],
                response_time_ms=elapsed_ms,
            )
            await self._record(question, answer, owner_id, knowledge_base_id)
            logger.info(
                "Answered question in session %s (kb=%s, fragments=%d)",
                session_id,
                knowledge_base_id,
                len(fragments),
            )
            return answer

    async def delete_session(
        self,
        session_id: str,
        *,
        purge_history: bool = False,
    ) -> int:
        """Drop the cached session; with *purge_history* also the permanent records.

        Returns the number of permanent records removed.
        """
        await self._context.delete_session(session_id)
        if not purge_history:
            return 0
        removed = await self._store.delete_chat_records(session_id)
        logger.info("Purged %d chat record(s) of session %s", removed, session_id)
        return removed

    async def chat_history(
        self, owner_id: str, session_id: str | None = None
    ) -> list[ChatRecord]:
        return await self._store.list_chat_records(owner_id, session_id)

    async def _get_or_create_session(
        self, session_id: str | None, owner_id: str, knowledge_base_id: str
    ) -> str:
        if session_id is not None:
            session = await self._context.get_session(session_id)
            if session is not None:
                return session_id
            if not self._context.enabled:
                return session_id
        return await self._context.create_session(owner_id, knowledge_base_id)

    async def _record(
        self,
        question: str,
        answer: Answer,
        owner_id: str,
        knowledge_base_id: str,
    ) -> None:
        """Write the exchange to the session window and the permanent store."""
        await self._context.add_user_turn(answer.session_id, question)
        await self._context.add_assistant_turn(
            answer.session_id,
            answer.answer,
            [fragment.id for fragment in answer.fragments],
        )
        try:
            await self._store.save_chat_record(
                ChatRecord(
                    session_id=answer.session_id,
                    owner_id=owner_id,
                    knowledge_base_id=knowledge_base_id,
                    question=question,
                    answer=answer.answer,
                    fragments=answer.fragments,
                    response_time_ms=answer.response_time_ms,
                )
            )
        except Exception:
            logger.exception(
                "Failed to persist chat record for session %s", answer.session_id
            )
