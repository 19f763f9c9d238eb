"""Post-processing of generated ticket documents."""

from __future__ import annotations

RESPONSIBLE_LABEL = "Responsável Principal:"

PARTIAL_RESULT_NOTE = (
    "\n\n---\n"
    "[Resultado parcial: a geração foi interrompida antes do fim. "
    "Revise o conteúdo antes de usar.]"
)


def responsible_footer(content: str, responsible: str) -> str:
    """Text to append so the document names its main responsible ('' if already there)."""
    if RESPONSIBLE_LABEL in content:
        return ""
    return f"\n\n### Responsáveis:\n- {RESPONSIBLE_LABEL} {responsible}"


def ensure_responsible(content: str, responsible: str) -> str:
    return content + responsible_footer(content, responsible)


def is_partial(content: str) -> bool:
    return PARTIAL_RESULT_NOTE.strip() in content


def mark_partial(content: str) -> str:
    if is_partial(content):
        return content
    return content + PARTIAL_RESULT_NOTE
