"""RoleRAG: FastMCP server exposing Q&A, character and role-play tools.

Tools delegate to the chat and profile services.  Call
``configure(...)`` before using the server.
"""

from __future__ import annotations

import logging
from time import perf_counter

from fastmcp import FastMCP
from neo4j import AsyncDriver
from neo4j import AsyncGraphDatabase
from pydantic import ValidationError
from redis.asyncio import Redis  # type: ignore[import-untyped]

from rolerag.chat.qa import QuestionAnswerService
from rolerag.chat.roleplay import RolePlayService
from rolerag.config import ConversationConfig
from rolerag.config import EmbeddingConfig
from rolerag.config import HybridSearchConfig
from rolerag.config import LLMConfig
from rolerag.config import ProfileTemplateConfig
from rolerag.config import RerankConfig
from rolerag.config import RolePlayConfig
from rolerag.engine import build_embedding_adapter
from rolerag.engine import build_llm_adapter
from rolerag.engine import EmbeddingAdapter
from rolerag.engine import HybridRetrievalEngine
from rolerag.engine import LLMAdapter
from rolerag.engine import SearchBackend
from rolerag.engine import SimilaritySearchAdapter
from rolerag.errors import RoleRagError
from rolerag.memory import ConversationContextManager
from rolerag.models.schemas import AskQuestionInput
from rolerag.models.schemas import AskQuestionResult
from rolerag.models.schemas import CharacterResult
from rolerag.models.schemas import CreateCharacterInput
from rolerag.models.schemas import ProfileResult
from rolerag.models.schemas import RateTurnInput
from rolerag.models.schemas import RolePlaySessionResult
from rolerag.models.schemas import RolePlayTurnResult
from rolerag.models.schemas import SendMessageInput
from rolerag.models.schemas import ToolResult
from rolerag.observability import record_latency
from rolerag.profile import CharacterService
from rolerag.profile import ProfileGenerator
from rolerag.profile import ProfileUpdate
from rolerag.store import init_schema
from rolerag.store import Neo4jChunkSearch
from rolerag.store import Neo4jRecordStore
from rolerag.store import RecordStore

logger = logging.getLogger(__name__)

mcp = FastMCP("RoleRAG")

SERVICE_UNAVAILABLE_MESSAGE = (
    "The conversation service is temporarily unavailable. Please try again later."
)

# ---------------------------------------------------------------------------
# Service instances (set via configure())
# ---------------------------------------------------------------------------

_redis: Redis | None = None
_graph_driver: AsyncDriver | None = None
_qa: QuestionAnswerService | None = None
_characters: CharacterService | None = None
_generator: ProfileGenerator | None = None
_roleplay: RolePlayService | None = None


async def configure(
    redis_url: str | None = "redis://localhost:6379",
    *,
    neo4j_url: str | None = None,
    neo4j_auth: tuple[str, str] | None = None,
    record_store: RecordStore | None = None,
    search_backend: SearchBackend | None = None,
    llm_config: LLMConfig | None = None,
    llm_adapter: LLMAdapter | None = None,
    embedding_config: EmbeddingConfig | None = None,
    embedding_adapter: EmbeddingAdapter | None = None,
    hybrid_config: HybridSearchConfig | None = None,
    rerank_config: RerankConfig | None = None,
    conversation_config: ConversationConfig | None = None,
    template_config: ProfileTemplateConfig | None = None,
    roleplay_config: RolePlayConfig | None = None,
) -> None:
    """Wire the services behind the MCP tools.

    Persistence and search default to Neo4j at *neo4j_url*; either can be
    supplied directly instead.  Without *redis_url* the conversation
    cache runs disabled.
    """
    global _redis, _graph_driver, _qa, _characters, _generator, _roleplay
    await shutdown()

    embedding_cfg = embedding_config or EmbeddingConfig()
    if record_store is None or search_backend is None:
        if neo4j_url is None:
            raise ValueError(
                "neo4j_url is required unless record_store and search_backend "
                "are both provided"
            )
        _graph_driver = AsyncGraphDatabase.driver(neo4j_url, auth=neo4j_auth)
        await init_schema(_graph_driver, embedding_dimensions=embedding_cfg.dimensions)
        record_store = record_store or Neo4jRecordStore(_graph_driver)
        search_backend = search_backend or Neo4jChunkSearch(_graph_driver)

    llm_cfg = llm_config or LLMConfig()
    llm = llm_adapter or build_llm_adapter(llm_cfg)
    embedder = embedding_adapter or build_embedding_adapter(embedding_cfg)

    if redis_url is not None:
        _redis = Redis.from_url(redis_url)
    context = ConversationContextManager(_redis, conversation_config)

    retrieval = HybridRetrievalEngine(
        SimilaritySearchAdapter(search_backend),
        embedder,
        config=hybrid_config,
        rerank_config=rerank_config,
    )
    _generator = ProfileGenerator(
        record_store,
        retrieval,
        llm,
        llm_config=llm_cfg,
        template_config=template_config,
    )
    _characters = CharacterService(record_store, _generator)
    _qa = QuestionAnswerService(
        retrieval, llm, context, record_store, llm_config=llm_cfg
    )
    _roleplay = RolePlayService(
        record_store,
        retrieval,
        llm,
        context,
        config=roleplay_config,
        timeout_seconds=llm_cfg.timeout_seconds,
    )
    logger.info("RoleRAG server configured (cache=%s)", context.enabled)


async def shutdown() -> None:
    """Close backend clients and release server resources."""
    global _redis, _graph_driver, _qa, _characters, _generator, _roleplay
    if _redis is not None:
        try:
            await _redis.aclose()
        except RuntimeError:
            # Tests may reconfigure across event loops.
            pass
        _redis = None
    if _graph_driver is not None:
        try:
            await _graph_driver.close()
        except RuntimeError:
            # Tests may reconfigure across event loops.
            pass
        _graph_driver = None
    _qa = None
    _characters = None
    _generator = None
    _roleplay = None


def _require(service, name: str):
    if service is None:
        raise RuntimeError(f"{name} not configured. Call configure() first.")
    return service


# ---------------------------------------------------------------------------
# Result helpers
# ---------------------------------------------------------------------------


def _validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0] if exc.errors() else {}
    return str(err.get("msg", "Invalid input"))


def _rejected(result_cls: type[ToolResult], exc: Exception) -> ToolResult:
    if isinstance(exc, ValidationError):
        return result_cls(
            status="rejected",
            error_code="validation_error",
            message=_validation_message(exc),
        )
    if isinstance(exc, RoleRagError):
        return result_cls(status="rejected", error_code=exc.error_code, message=str(exc))
    return result_cls(status="rejected", error_code="invalid_request", message=str(exc))


def _unavailable(result_cls: type[ToolResult], operation: str) -> ToolResult:
    logger.exception("Tool %s failed on a backend error", operation)
    return result_cls(
        status="rejected",
        error_code="service_unavailable",
        message=SERVICE_UNAVAILABLE_MESSAGE,
    )


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool
async def ask_question(
    question: str,
    knowledge_base_id: str,
    owner_id: str,
    session_id: str | None = None,
) -> AskQuestionResult:
    """Answer a question from the content of a knowledge base.

    Args:
        question: Natural language question.
        knowledge_base_id: Knowledge base to search.
        owner_id: Identifier of the asking user.
        session_id: Conversation to continue; omitted starts a new one.
    """
    start = perf_counter()
    ok = False
    try:
        qa = _require(_qa, "Question answering")
        try:
            validated = AskQuestionInput.model_validate(
                {
                    "question": question,
                    "knowledge_base_id": knowledge_base_id,
                    "owner_id": owner_id,
                    "session_id": session_id,
                }
            )
        except ValidationError as exc:
            return _rejected(AskQuestionResult, exc)

        answer = await qa.ask_question(
            validated.question,
            validated.knowledge_base_id,
            validated.owner_id,
            validated.session_id,
        )
        ok = not answer.degraded
        return AskQuestionResult(answer=answer)
    finally:
        record_latency(
            operation="mcp.ask_question",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def create_character(
    owner_id: str,
    knowledge_base_id: str,
    name: str,
    description: str = "",
    is_public: bool = False,
) -> CharacterResult:
    """Create a character and start generating its profile in the background.

    Args:
        owner_id: Identifier of the owning user.
        knowledge_base_id: Knowledge base the persona is distilled from.
        name: Unique (per owner) character name.
        description: Short free-text description.
        is_public: Whether other users may discover the character.
    """
    characters = _require(_characters, "Character service")
    try:
        validated = CreateCharacterInput.model_validate(
            {
                "owner_id": owner_id,
                "knowledge_base_id": knowledge_base_id,
                "name": name,
                "description": description,
                "is_public": is_public,
            }
        )
        character = await characters.create_character(
            validated.owner_id,
            validated.knowledge_base_id,
            validated.name,
            validated.description,
            is_public=validated.is_public,
        )
    except (RoleRagError, ValueError) as exc:
        return _rejected(CharacterResult, exc)
    return CharacterResult(character=character)


@mcp.tool
async def get_character(owner_id: str, character_id: str) -> CharacterResult:
    """Return a character together with its current profile."""
    characters = _require(_characters, "Character service")
    generator = _require(_generator, "Profile generator")
    try:
        character = await characters.get_character(owner_id, character_id)
    except RoleRagError as exc:
        return _rejected(CharacterResult, exc)
    profile = await generator.get_profile(character_id)
    return CharacterResult(character=character, profile=profile)


@mcp.tool
async def activate_character(owner_id: str, character_id: str) -> CharacterResult:
    """Make a character playable once its profile has completed."""
    characters = _require(_characters, "Character service")
    try:
        character = await characters.activate_character(owner_id, character_id)
    except RoleRagError as exc:
        return _rejected(CharacterResult, exc)
    return CharacterResult(character=character)


@mcp.tool
async def regenerate_profile(owner_id: str, character_id: str) -> CharacterResult:
    """Start a fresh background generation of a character's profile."""
    characters = _require(_characters, "Character service")
    try:
        await characters.regenerate_profile(owner_id, character_id)
        character = await characters.get_character(owner_id, character_id)
    except RoleRagError as exc:
        return _rejected(CharacterResult, exc)
    return CharacterResult(character=character)


@mcp.tool
async def update_profile(
    owner_id: str, character_id: str, fields: dict[str, str]
) -> ProfileResult:
    """Overwrite profile fields by hand.

    Args:
        owner_id: Identifier of the owning user.
        character_id: Character whose profile is edited.
        fields: Field name to new text, e.g. ``{"personality": "..."}``.
    """
    characters = _require(_characters, "Character service")
    generator = _require(_generator, "Profile generator")
    try:
        update = ProfileUpdate.model_validate(fields)
        await characters.get_character(owner_id, character_id)
        profile = await generator.update_profile(character_id, update)
    except (RoleRagError, ValueError) as exc:
        return _rejected(ProfileResult, exc)
    return ProfileResult(profile=profile)


@mcp.tool
async def regenerate_system_prompt(
    owner_id: str,
    character_id: str,
    preset: str | None = None,
    overrides: dict[str, bool | int | str] | None = None,
) -> ProfileResult:
    """Re-render only a character's system prompt from its current fields.

    Args:
        owner_id: Identifier of the owning user.
        character_id: Character whose system prompt is rebuilt.
        preset: Template preset (standard, minimal, detailed); omitted
            keeps the server's configured template.
        overrides: Template options to change, e.g.
            ``{"include_examples": false, "custom_prefix": "..."}``.
    """
    characters = _require(_characters, "Character service")
    generator = _require(_generator, "Profile generator")
    try:
        template_config = None
        if preset is not None or overrides:
            base = (
                ProfileTemplateConfig.preset(preset)
                if preset is not None
                else generator.template_config
            )
            template_config = base.with_overrides(**(overrides or {}))
        character = await characters.get_character(owner_id, character_id)
        profile = await generator.regenerate_system_prompt(character, template_config)
    except (RoleRagError, ValueError) as exc:
        return _rejected(ProfileResult, exc)
    return ProfileResult(profile=profile)


@mcp.tool
async def start_roleplay(
    owner_id: str, character_id: str, name: str | None = None
) -> RolePlaySessionResult:
    """Open a role-play session with an active character."""
    roleplay = _require(_roleplay, "Role-play service")
    try:
        session = await roleplay.create_session(owner_id, character_id, name)
    except RoleRagError as exc:
        return _rejected(RolePlaySessionResult, exc)
    except Exception:
        return _unavailable(RolePlaySessionResult, "start_roleplay")
    return RolePlaySessionResult(session=session)


@mcp.tool
async def send_roleplay_message(
    owner_id: str, session_id: str, message: str
) -> RolePlayTurnResult:
    """Send a message to the character and return the recorded turn."""
    start = perf_counter()
    ok = False
    try:
        roleplay = _require(_roleplay, "Role-play service")
        try:
            validated = SendMessageInput.model_validate(
                {"owner_id": owner_id, "session_id": session_id, "message": message}
            )
            turn = await roleplay.send_message(
                validated.owner_id, validated.session_id, validated.message
            )
        except (RoleRagError, ValueError) as exc:
            return _rejected(RolePlayTurnResult, exc)
        except Exception:
            return _unavailable(RolePlayTurnResult, "send_roleplay_message")
        ok = True
        return RolePlayTurnResult(turn=turn)
    finally:
        record_latency(
            operation="mcp.send_roleplay_message",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def rate_roleplay_turn(
    owner_id: str,
    turn_id: str,
    rating: int,
    feedback: str | None = None,
) -> RolePlayTurnResult:
    """Rate one character reply between 1 and 5."""
    roleplay = _require(_roleplay, "Role-play service")
    try:
        validated = RateTurnInput.model_validate(
            {
                "owner_id": owner_id,
                "turn_id": turn_id,
                "rating": rating,
                "feedback": feedback,
            }
        )
        turn = await roleplay.rate_turn(
            validated.owner_id,
            validated.turn_id,
            validated.rating,
            validated.feedback,
        )
    except (RoleRagError, ValueError) as exc:
        return _rejected(RolePlayTurnResult, exc)
    except Exception:
        return _unavailable(RolePlayTurnResult, "rate_roleplay_turn")
    return RolePlayTurnResult(turn=turn)


@mcp.tool
async def end_roleplay(owner_id: str, session_id: str) -> RolePlaySessionResult:
    """End a role-play session; its turns stay readable."""
    roleplay = _require(_roleplay, "Role-play service")
    try:
        session = await roleplay.end_session(owner_id, session_id)
    except RoleRagError as exc:
        return _rejected(RolePlaySessionResult, exc)
    except Exception:
        return _unavailable(RolePlaySessionResult, "end_roleplay")
    return RolePlaySessionResult(session=session)


@mcp.tool
async def roleplay_history(
    owner_id: str, session_id: str, limit: int | None = None
) -> RolePlaySessionResult:
    """Return a role-play session with its turns, oldest first."""
    roleplay = _require(_roleplay, "Role-play service")
    try:
        session = await roleplay.get_session(owner_id, session_id)
        turns = await roleplay.session_history(owner_id, session_id, limit=limit)
    except RoleRagError as exc:
        return _rejected(RolePlaySessionResult, exc)
    except Exception:
        return _unavailable(RolePlaySessionResult, "roleplay_history")
    return RolePlaySessionResult(session=session, turns=turns)
