"""
Query translator — asks the language model for one SELECT query answering the
question, plus an explanation and an optional chart intent.

Model output is untrusted text: it is parsed and shape-checked here, and the
query itself is checked by the validator before anything runs.
"""
import json
import logging
import re
from typing import Optional, Sequence

from pydantic import ValidationError

from core.errors import ErrorKind, PipelineError
from integrations.ollama_client import OllamaClient, OllamaError, OllamaTransientError
from models.chat import ConversationTurn
from models.query import ChartIntent, Scalar, TranslationResult
from models.table import SchemaContext
from prompts.query_generation import build_system_prompt

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2        # first call + one retry on a transient failure

_FENCE_RE = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$", re.IGNORECASE)


def unwrap_fences(raw: str) -> str:
    """Strip a markdown code fence if the model added one."""
    text = raw.strip()
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text


def _is_scalar(value) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def parse_model_output(raw: str, store_id: str, max_chars: int) -> TranslationResult:
    """Turn the model's reply into a TranslationResult or raise MalformedModelOutput."""
    if len(raw) > max_chars:
        raise _malformed(f"output is {len(raw)} chars (limit {max_chars})")

    try:
        payload = json.loads(unwrap_fences(raw))
    except json.JSONDecodeError as e:
        raise _malformed(f"not JSON: {e}") from e
    if not isinstance(payload, dict):
        raise _malformed(f"expected a JSON object, got {type(payload).__name__}")

    sql = payload.get("sql")
    if not isinstance(sql, str) or not sql.strip():
        raise _malformed("missing or empty 'sql'")

    explanation = payload.get("explanation", "")
    if not isinstance(explanation, str):
        raise _malformed("'explanation' is not a string")

    params = payload.get("params") or []
    if not isinstance(params, list) or not all(_is_scalar(p) for p in params):
        raise _malformed("'params' must be a list of scalars")

    return TranslationResult(
        query=sql.strip(),
        parameters=(store_id, *params),
        explanation=explanation.strip(),
        chart_intent=_parse_chart_intent(payload.get("chartSpec")),
    )


def _parse_chart_intent(spec) -> Optional[ChartIntent]:
    if spec is None:
        return None
    if not isinstance(spec, dict):
        logger.warning("Ignoring chartSpec of type %s", type(spec).__name__)
        return None
    try:
        return ChartIntent.model_validate(spec)
    except ValidationError as e:
        logger.warning("Ignoring invalid chartSpec: %d errors", e.error_count())
        return None


def _malformed(detail: str) -> PipelineError:
    logger.warning("Malformed model output: %s", detail)
    return PipelineError(ErrorKind.MALFORMED_MODEL_OUTPUT, detail=detail)


def build_messages(
    context: SchemaContext,
    question: str,
    history: Sequence[ConversationTurn] = (),
    history_turns: int = 6,
) -> list[dict]:
    """System prompt, then the last user/assistant turns, then the question."""
    messages = [{"role": "system", "content": build_system_prompt(context)}]
    prior = [t for t in history if t.role in ("user", "assistant")]
    if history_turns > 0:
        for turn in prior[-history_turns:]:
            messages.append({"role": turn.role, "content": turn.content})
    messages.append({"role": "user", "content": question})
    return messages


class QueryTranslator:
    """Question → TranslationResult via one model call (plus one retry on a transient failure)."""

    def __init__(self, client: OllamaClient, max_output_chars: int = 8000, history_turns: int = 6):
        self.client = client
        self.max_output_chars = max_output_chars
        self.history_turns = history_turns

    def translate(
        self,
        context: SchemaContext,
        question: str,
        history: Sequence[ConversationTurn] = (),
    ) -> TranslationResult:
        messages = build_messages(context, question, history, self.history_turns)
        raw = self._call_model(messages)
        result = parse_model_output(raw, context.store_id, self.max_output_chars)
        logger.info(
            "Translated question for store %s (%d params, chart=%s)",
            context.store_id, len(result.parameters),
            result.chart_intent.type if result.chart_intent else "none",
        )
        return result

    def _call_model(self, messages: list[dict]) -> str:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return self.client.chat(messages, json_mode=True)
            except OllamaTransientError as e:
                logger.warning("Model call attempt %d/%d failed: %s", attempt, MAX_ATTEMPTS, e)
                if attempt == MAX_ATTEMPTS:
                    raise PipelineError(ErrorKind.TRANSLATION_UNAVAILABLE, detail=str(e)) from e
            except OllamaError as e:
                logger.error("Model call rejected: %s", e)
                raise PipelineError(ErrorKind.TRANSLATION_UNAVAILABLE, detail=str(e)) from e
        raise PipelineError(ErrorKind.TRANSLATION_UNAVAILABLE, detail="no attempts made")
