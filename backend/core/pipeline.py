"""
Question pipeline — rate limit → schema context → translate → validate →
execute → chart → response, with each question and its outcome appended to
the tenant's conversation.

Any stage may end the request with a PipelineError; later stages never run.
"""
import logging
from threading import Event
from typing import Optional

from core.chart_spec import resolve_chart
from core.conversation import ConversationStore
from core.errors import ErrorKind, PipelineError
from core.executor import QueryExecutor
from core.rate_limiter import RateLimiter
from core.schema_context import SchemaContextBuilder
from core.sql_validator import validate_query
from core.translator import QueryTranslator
from models.chat import ChartPayload, ChatResponse, ConversationTurn, TenantContext

logger = logging.getLogger(__name__)
security_log = logging.getLogger("storelens.security")

EMPTY_RESULT_NOTE = "No matching data was found."

DEFAULT_SUGGESTIONS = [
    "What was my total revenue this month?",
    "What are my top 5 selling products?",
    "How many new customers did I get this week?",
    "What is my average order value?",
    "Show revenue trend for the last 30 days",
    "Which product categories perform best?",
]


class QueryPipeline:
    def __init__(
        self,
        rate_limiter: RateLimiter,
        schema_builder: SchemaContextBuilder,
        translator: QueryTranslator,
        executor: QueryExecutor,
        conversations: ConversationStore,
        row_cap: int = 100,
        expose_sql: bool = False,
    ):
        self.rate_limiter = rate_limiter
        self.schema_builder = schema_builder
        self.translator = translator
        self.executor = executor
        self.conversations = conversations
        self.row_cap = row_cap
        self.expose_sql = expose_sql

    def ask(
        self,
        tenant: TenantContext,
        question: str,
        conversation_id: Optional[str] = None,
        cancel: Optional[Event] = None,
    ) -> ChatResponse:
        """Answer one question for one tenant. Raises PipelineError on any stage failure."""
        store_id = tenant.store_id
        self.rate_limiter.check(store_id, tenant.plan)

        conv_id = self.conversations.resolve(store_id, conversation_id)
        history = self.conversations.history(store_id, conv_id)
        user_turn = ConversationTurn(role="user", content=question)

        try:
            response = self._run(tenant, question, conv_id, history, cancel)
        except PipelineError as e:
            self._record_failure(store_id, conv_id, user_turn, e)
            raise
        except Exception as e:
            logger.exception("Unexpected pipeline failure for store %s", store_id)
            err = PipelineError(ErrorKind.INTERNAL_ERROR, detail=str(e))
            self._record_failure(store_id, conv_id, user_turn, err)
            raise err from e

        self.conversations.append(
            store_id, conv_id, user_turn,
            ConversationTurn(
                role="assistant",
                content=response.answer,
                attached_data={
                    "chart": response.chart.model_dump(mode="json") if response.chart else None,
                    "rows": response.data,
                },
            ),
        )
        return response

    def _run(self, tenant, question, conv_id, history, cancel) -> ChatResponse:
        store_id = tenant.store_id

        _checkpoint(cancel, "schema context")
        context = self.schema_builder.build(store_id)

        _checkpoint(cancel, "translation")
        translation = self.translator.translate(context, question, history)

        verdict = validate_query(translation.query, translation.parameters, store_id, self.row_cap)
        if not verdict.accepted:
            security_log.warning(
                "Rejected generated query for store %s: %s (%s) | query=%r",
                store_id, verdict.rejection_reason.value, verdict.detail, translation.query,
            )
            raise PipelineError(verdict.rejection_reason, detail=verdict.detail)

        _checkpoint(cancel, "execution")
        result = self.executor.execute(verdict.normalized_query, translation.parameters, cancel)
        if cancel is not None and cancel.is_set():
            logger.info("Store %s: dropping %d rows, request was cancelled", store_id, result.row_count)
            raise PipelineError(ErrorKind.INTERNAL_ERROR, detail="cancelled after execution")

        chart = resolve_chart(result.rows, translation.chart_intent)
        answer = translation.explanation or "Here is what I found."
        if not result.rows:
            answer = f"{answer} {EMPTY_RESULT_NOTE}"

        return ChatResponse(
            answer=answer,
            chart=ChartPayload(config=chart),
            data=result.rows,
            sql=verdict.normalized_query if self.expose_sql else None,
            conversation_id=conv_id,
        )

    def _record_failure(self, store_id: str, conv_id: str, user_turn: ConversationTurn, err: PipelineError) -> None:
        self.conversations.append(
            store_id, conv_id, user_turn,
            ConversationTurn(role="error", content=err.user_message, attached_data={"code": err.kind.value}),
        )


def _checkpoint(cancel: Optional[Event], stage: str) -> None:
    if cancel is not None and cancel.is_set():
        logger.info("Request cancelled before %s", stage)
        raise PipelineError(ErrorKind.INTERNAL_ERROR, detail=f"cancelled before {stage}")
