# askdocs/prompting.py
from __future__ import annotations
from typing import Dict, List, Sequence

from .schemas import PromptPayload, RetrievedFragment


PROMPT_TEMPLATE = """\
Use the following pieces of context to answer the question at the end.
If you don't know the answer, just say "Sorry, I don't know how to answer that. I can only answer questions about {product}. Can you restate your question?", don't try to make up an answer.

{context}

Question: {question}
Answer:"""

FRAGMENT_SEPARATOR = "\n\n"


def assemble(
    fragments: Sequence[RetrievedFragment],
    question: str,
    max_chars: int = 0,
) -> PromptPayload:
    """
    Joins fragment texts in retrieval order (highest ranked first) and binds
    the question verbatim. No dedup.

    max_chars > 0 drops whole trailing fragments once the context block would
    exceed it; 0 keeps everything.
    """
    picked: List[RetrievedFragment] = []
    used = 0
    for frag in fragments:
        cost = len(frag.text) + (len(FRAGMENT_SEPARATOR) if picked else 0)
        if max_chars and used + cost > max_chars:
            break
        picked.append(frag)
        used += cost

    context = FRAGMENT_SEPARATOR.join(f.text for f in picked)
    return PromptPayload(context_block=context, question=question, fragments=tuple(picked))


def render_prompt(payload: PromptPayload, product: str) -> str:
    return PROMPT_TEMPLATE.format(
        product=product,
        context=payload.context_block,
        question=payload.question,
    )


def build_messages(payload: PromptPayload, product: str) -> List[Dict]:
    return [{"role": "user", "content": render_prompt(payload, product)}]
