"""Question-answering models.

A :class:`ContextWindow` is the set of labelled chunk blocks (``C1``,
``C2``, ...) assembled for one question.  The generation provider may only
cite labels from that window; :class:`QAResult` carries the citations
resolved back to ``(document_id, chunk_index)``.  Results are returned to
the caller and never persisted.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Answer text returned whenever no grounded answer exists.
NO_GROUNDED_ANSWER_TEXT = "No grounded answer was found in the available documents."


class QAOutcome(str, Enum):  # noqa: UP042
    """How a question was resolved."""

    ANSWERED = "answered"
    NO_GROUNDED_ANSWER = "no_grounded_answer"
    SERVICE_UNAVAILABLE = "service_unavailable"


class Citation(BaseModel):
    """A chunk that supports an answer."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_index: int = Field(ge=0)
    snippet: str = ""


class QAResult(BaseModel):
    """Answer to a question, with ordered citations."""

    model_config = ConfigDict(frozen=True)

    answer: str = ""
    citations: list[Citation] = Field(default_factory=list)
    outcome: QAOutcome

    @property
    def is_grounded(self) -> bool:
        return self.outcome == QAOutcome.ANSWERED and bool(self.citations)


class ContextBlock(BaseModel):
    """One labelled chunk included in the generation prompt."""

    model_config = ConfigDict(frozen=True)

    label: str
    document_id: str
    chunk_index: int
    filename: str = ""
    text: str

    def render(self) -> str:
        header = f"[{self.label}] document={self.document_id} chunk={self.chunk_index}"
        if self.filename:
            header += f" file={self.filename}"
        return f"{header}\n{self.text}"


class ContextWindow(BaseModel):
    """The blocks assembled for one question."""

    model_config = ConfigDict(frozen=True)

    blocks: list[ContextBlock] = Field(default_factory=list)

    @property
    def labels(self) -> dict[str, ContextBlock]:
        return {block.label: block for block in self.blocks}

    def render(self) -> str:
        return "\n\n---\n\n".join(block.render() for block in self.blocks)
