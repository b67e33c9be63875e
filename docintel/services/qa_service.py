"""Retrieval-augmented question answering with citations.

The QA service answers a question from one tenant's documents only:

1. **Retrieve** the top ``k`` chunks through :class:`SearchService`.
2. **Assemble** them into a :class:`ContextWindow` of labelled blocks
   (``[C1]``, ``[C2]``, ...) that fits the context budget.
3. **Generate** an answer with a system prompt that forbids knowledge from
   outside the context and requires JSON naming the labels used.
4. **Resolve** those labels back to ``(document_id, chunk_index)``.  Labels
   that are not in the window are dropped, so every returned citation
   points at a chunk the model was actually shown.

An answer with no surviving citation is reported as
``NO_GROUNDED_ANSWER``.  Outages of retrieval or generation are reported as
``SERVICE_UNAVAILABLE``, never as an empty answer.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import TYPE_CHECKING, Any

import structlog

from docintel.models.audit import AuditAction, AuditEvent, AuditResult
from docintel.models.qa import (
    NO_GROUNDED_ANSWER_TEXT,
    Citation,
    ContextBlock,
    ContextWindow,
    QAOutcome,
    QAResult,
)
from docintel.utils.errors import DocIntelError, ServiceUnavailableError

if TYPE_CHECKING:
    from docintel.interfaces.audit_sink import IAuditSink
    from docintel.interfaces.llm_provider import ILLMProvider
    from docintel.models.search import SearchHit
    from docintel.services.search_service import SearchService

logger = structlog.get_logger(logger_name=__name__)

NO_ANSWER_SENTINEL = "NO_ANSWER"

_LABEL_RE = re.compile(r"\bC(\d+)\b")
_INLINE_MARKER_RE = re.compile(r"\[(C\d+)\]")
_BLOCK_SEPARATOR = "\n\n---\n\n"
# Truncating a block below this many characters leaves nothing worth citing.
_MIN_TRUNCATED_BLOCK = 200


class QAService:
    """Answers questions over a tenant's documents using retrieval + LLM.

    Parameters
    ----------
    search_service:
        Tenant-scoped retrieval.
    llm:
        Generation provider.
    top_k:
        Default number of chunks retrieved per question.
    max_context_chars:
        Budget for the rendered context window.
    max_answer_tokens:
        Upper bound passed to the generation provider.
    snippet_chars:
        Length of the excerpt attached to each citation.
    generation_timeout:
        Seconds allowed for the generation call.
    audit_sink:
        Optional sink receiving a ``question.answer`` event per question.
    """

    _SYSTEM_PROMPT = (
        "You answer questions using ONLY the numbered context blocks provided by the user. "
        "Each block starts with a label such as [C1].\n\n"
        "Rules:\n"
        "- Use no knowledge outside the context blocks, even if you know the answer.\n"
        "- Every statement in your answer must be supported by at least one block.\n"
        "- Cite the labels of every block you relied on.\n"
        f'- If the blocks do not contain the answer, set "answer" to "{NO_ANSWER_SENTINEL}" '
        "and return an empty citations list.\n\n"
        "IMPORTANT: Your response MUST be valid JSON with this exact structure:\n"
        '{"answer": "your answer text here", "citations": ["C1", "C2"]}'
    )

    def __init__(
        self,
        search_service: SearchService,
        llm: ILLMProvider,
        top_k: int = 5,
        max_context_chars: int = 12_000,
        max_answer_tokens: int = 800,
        snippet_chars: int = 240,
        generation_timeout: float | None = 60.0,
        audit_sink: IAuditSink | None = None,
    ) -> None:
        self._search = search_service
        self._llm = llm
        self._top_k = top_k
        self._max_context_chars = max_context_chars
        self._max_answer_tokens = max_answer_tokens
        self._snippet_chars = snippet_chars
        self._generation_timeout = generation_timeout
        self._audit = audit_sink

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ask(
        self,
        question: str,
        tenant_id: str,
        k: int | None = None,
        actor_id: str | None = None,
    ) -> QAResult:
        """Answer *question* from *tenant_id*'s indexed documents.

        Parameters
        ----------
        question:
            The natural-language question.
        tenant_id:
            Tenant whose documents may be used.
        k:
            Number of chunks to retrieve; defaults to the configured top-k.
        actor_id:
            Optional caller identity recorded in the audit event.

        Returns
        -------
        QAResult
            ``ANSWERED`` with at least one citation, ``NO_GROUNDED_ANSWER``
            with no citations, or ``SERVICE_UNAVAILABLE``.
        """
        question = question.strip()
        if not question:
            return await self._finish(tenant_id, actor_id, question, self._no_answer())

        try:
            hits = await self._search.search(tenant_id, question, k or self._top_k, actor_id)
        except ServiceUnavailableError as exc:
            logger.error("qa_retrieval_unavailable", tenant_id=tenant_id, error=str(exc))
            return await self._finish(tenant_id, actor_id, question, self._unavailable())

        if not hits:
            logger.info("qa_no_hits", tenant_id=tenant_id, question=question[:80])
            return await self._finish(tenant_id, actor_id, question, self._no_answer())

        window = self.build_context(hits)
        if not window.blocks:
            return await self._finish(tenant_id, actor_id, question, self._no_answer())

        try:
            raw = await asyncio.wait_for(
                self._llm.complete(
                    system_prompt=self._SYSTEM_PROMPT,
                    user_prompt=self._build_user_prompt(question, window),
                    temperature=0.0,
                    max_tokens=self._max_answer_tokens,
                ),
                timeout=self._generation_timeout,
            )
        except (DocIntelError, asyncio.TimeoutError) as exc:
            logger.error(
                "qa_generation_failed",
                tenant_id=tenant_id,
                provider=self._llm.get_provider_name(),
                error=str(exc) or type(exc).__name__,
            )
            return await self._finish(tenant_id, actor_id, question, self._unavailable())

        answer, labels = self.parse_response(raw)
        citations = self.resolve_citations(labels, window)
        if answer is None or not citations:
            logger.info(
                "qa_not_grounded",
                tenant_id=tenant_id,
                declined=answer is None,
                cited_labels=labels,
            )
            return await self._finish(tenant_id, actor_id, question, self._no_answer())

        result = QAResult(answer=answer, citations=citations, outcome=QAOutcome.ANSWERED)
        logger.info(
            "qa_answered",
            tenant_id=tenant_id,
            question=question[:80],
            context_blocks=len(window.blocks),
            citations=len(citations),
        )
        return await self._finish(tenant_id, actor_id, question, result)

    def build_context(self, hits: list[SearchHit]) -> ContextWindow:
        """Label hits ``C1..Cn`` and keep as many as fit the context budget.

        Whole blocks are added in rank order.  The first block that does not
        fit is truncated when enough room remains; nothing after it is
        included.  Labels are always kept intact.
        """
        blocks: list[ContextBlock] = []
        used = 0
        for hit in hits:
            block = ContextBlock(
                label=f"C{len(blocks) + 1}",
                document_id=hit.document_id,
                chunk_index=hit.chunk_index,
                filename=hit.filename,
                text=hit.content,
            )
            cost = len(block.render()) + (len(_BLOCK_SEPARATOR) if blocks else 0)
            if used + cost <= self._max_context_chars:
                blocks.append(block)
                used += cost
                continue

            room = self._max_context_chars - used - (cost - len(hit.content))
            if room >= _MIN_TRUNCATED_BLOCK or (not blocks and room > 0):
                blocks.append(block.model_copy(update={"text": hit.content[:room]}))
            break

        logger.debug(
            "qa_context_built",
            hits=len(hits),
            blocks=len(blocks),
        )
        return ContextWindow(blocks=blocks)

    @staticmethod
    def parse_response(raw: str) -> tuple[str | None, list[str]]:
        """Parse the model's reply into ``(answer, labels)``.

        Returns ``(None, [])`` when the model declined to answer.  Accepts
        JSON wrapped in a markdown fence or in prose; when no JSON can be
        read, the raw text is the answer and inline ``[Cn]`` markers are
        the citations.
        """
        text = raw.strip()

        if text.startswith("```"):
            lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
            text = "\n".join(lines).strip()

        if not text.startswith("{"):
            json_match = re.search(r"\{[\s\S]*\}", text)
            if json_match:
                text = json_match.group(0)

        try:
            data: Any = json.loads(text)
        except json.JSONDecodeError:
            data = None

        if isinstance(data, dict):
            answer = str(data.get("answer") or "").strip()
            raw_labels = data.get("citations") or []
            if not isinstance(raw_labels, list):
                raw_labels = [raw_labels]
            labels = _normalize_labels(str(item) for item in raw_labels)
            if not labels:
                labels = _normalize_labels(_INLINE_MARKER_RE.findall(answer))
        else:
            answer = raw.strip()
            labels = _normalize_labels(_INLINE_MARKER_RE.findall(answer))

        if not answer or NO_ANSWER_SENTINEL in answer:
            return None, []
        return answer, labels

    def resolve_citations(self, labels: list[str], window: ContextWindow) -> list[Citation]:
        """Map labels to citations, dropping labels absent from *window*."""
        by_label = window.labels
        citations: list[Citation] = []
        seen: set[tuple[str, int]] = set()
        for label in labels:
            block = by_label.get(label)
            if block is None:
                logger.warning("qa_citation_outside_context", label=label)
                continue
            key = (block.document_id, block.chunk_index)
            if key in seen:
                continue
            seen.add(key)
            citations.append(
                Citation(
                    document_id=block.document_id,
                    chunk_index=block.chunk_index,
                    snippet=block.text[: self._snippet_chars].strip(),
                )
            )
        return citations

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _build_user_prompt(question: str, window: ContextWindow) -> str:
        return f"Context blocks:\n\n{window.render()}\n\nQuestion: {question}"

    @staticmethod
    def _no_answer() -> QAResult:
        return QAResult(answer=NO_GROUNDED_ANSWER_TEXT, outcome=QAOutcome.NO_GROUNDED_ANSWER)

    @staticmethod
    def _unavailable() -> QAResult:
        return QAResult(outcome=QAOutcome.SERVICE_UNAVAILABLE)

    async def _finish(
        self,
        tenant_id: str,
        actor_id: str | None,
        question: str,
        result: QAResult,
    ) -> QAResult:
        if self._audit is not None:
            await self._audit.emit(
                AuditEvent(
                    tenant_id=tenant_id,
                    actor_id=actor_id,
                    action=AuditAction.QUESTION_ANSWER,
                    result=(
                        AuditResult.FAILURE
                        if result.outcome == QAOutcome.SERVICE_UNAVAILABLE
                        else AuditResult.SUCCESS
                    ),
                    metadata={
                        "outcome": result.outcome.value,
                        "citations": len(result.citations),
                        "question_length": len(question),
                    },
                )
            )
        return result


def _normalize_labels(items: Any) -> list[str]:
    labels: list[str] = []
    for item in items:
        for number in _LABEL_RE.findall(str(item)):
            label = f"C{int(number)}"
            if label not in labels:
                labels.append(label)
    return labels
