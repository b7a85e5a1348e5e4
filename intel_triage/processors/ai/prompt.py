from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from ...models import PIR, NO_CATEGORY


def render_pirs(pirs: Sequence[PIR]) -> str:
    lines = []
    for pir in pirs:
        line = f"{pir.name.upper()} ({pir.category}): {pir.description}"
        if pir.keywords:
            line += f" Keywords: {', '.join(pir.keywords)}"
        lines.append(line)
    return "\n".join(lines)


def build_prompt(
    content: str,
    pirs: Sequence[PIR],
    *,
    source: str = "",
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """Analyst prompt asking for a single JSON classification record."""
    metadata = metadata or {}
    categories = " | ".join(f'"{c}"' for c in [p.category for p in pirs] + [NO_CATEGORY])
    context = [f"Source: {source}"]
    for key in ("location", "author", "date"):
        if metadata.get(key):
            context.append(f"{key.capitalize()}: {metadata[key]}")

    return (
        "You are an intelligence analyst for corporate security. "
        "Analyze the following content against these Priority Intelligence Requirements (PIRs):\n\n"
        f"{render_pirs(pirs)}\n\n"
        "Content to analyze:\n"
        f'"{content}"\n\n'
        + "\n".join(context)
        + "\n\n"
        "Instructions:\n"
        "1. Determine if this content is relevant to any PIR\n"
        "2. Be conservative - only flag items with clear relevance\n"
        "3. Consider context, not just keywords\n"
        "4. Assess confidence based on content quality and relevance\n\n"
        "Respond with a single JSON object and nothing else:\n"
        "{\n"
        '    "relevant": true/false,\n'
        f'    "category": {categories},\n'
        '    "priority": "high" | "medium" | "low",\n'
        '    "confidence": 0-100,\n'
        '    "title": "Clear, concise title for intelligence feed (max 80 chars)",\n'
        '    "summary": "2-3 sentence summary for analysts (max 200 chars)",\n'
        '    "quote": "Most relevant quote from original content (if applicable, max 150 chars)",\n'
        '    "reasoning": "Brief explanation of categorization and confidence score",\n'
        '    "tags": ["tag1", "tag2"]\n'
        "}\n\n"
        "Only mark as relevant if it directly relates to one of our PIRs. "
        "It is better to reject marginally relevant items."
    )
