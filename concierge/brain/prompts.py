"""Prompt assembly for one conversational turn."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from concierge.brain.directive import visible_text

if TYPE_CHECKING:
    from concierge.models import (
        ConversationTurn,
        ExtractedContent,
        ImageAnalysisResult,
        MediaAttachment,
    )

MAX_IMAGE_DESCRIPTION_CHARS = 280

SYSTEM_POLICY = """\
You are {name}, a music concierge that helps independent artists over direct messages.
Keep replies short, friendly and practical (two to four sentences).
When the user wants to save inspiration, find contacts, set a reminder or open analytics,
call the matching function instead of describing the steps.
If a follow-up action in the user's dashboard makes sense, end your reply with one block:
[ACTION]
{{"intent": "<moodboard.add|network.suggest|task.create|content.analyze|strategy.recommend|chat.generic>", "entities": {{}}}}
[/ACTION]
Never mention the block in your visible text."""


def system_message(assistant_name: str) -> dict[str, Any]:
    return {"role": "system", "content": SYSTEM_POLICY.format(name=assistant_name)}


def history_messages(history: list[ConversationTurn]) -> list[dict[str, Any]]:
    """Prior turns, oldest first. Assistant turns keep only their visible text."""
    messages: list[dict[str, Any]] = []
    for turn in history:
        if turn.user_text:
            messages.append({"role": "user", "content": turn.user_text})
        if turn.assistant_text:
            text = visible_text(turn.assistant_text)
            if text:
                messages.append({"role": "assistant", "content": text})
    return messages


def summarize_extracted(items: list[ExtractedContent]) -> str:
    lines = []
    for item in items:
        label = item.type.value.replace("_", " ")
        line = f"- {label}: {item.title or item.url}"
        if item.description:
            line += f" ({item.description})"
        lines.append(line)
    return "Shared links:\n" + "\n".join(lines)


def summarize_attachments(attachments: list[MediaAttachment]) -> str:
    parts = [a.title or a.type for a in attachments]
    return f"Attached media: {', '.join(parts)}"


def summarize_analysis(analysis: ImageAnalysisResult) -> str:
    description = analysis.description
    if len(description) > MAX_IMAGE_DESCRIPTION_CHARS:
        description = description[:MAX_IMAGE_DESCRIPTION_CHARS].rstrip() + "..."
    summary = f"Image analysis: {description}"
    if analysis.actionable_advice:
        summary += f"\nTop tip: {analysis.actionable_advice[0]}"
    return summary


def build_messages(
    assistant_name: str,
    history: list[ConversationTurn],
    user_text: str,
    extracted: list[ExtractedContent] | None = None,
    attachments: list[MediaAttachment] | None = None,
    analysis: ImageAnalysisResult | None = None,
) -> list[dict[str, Any]]:
    """Full message list for the model.

    ``attachments`` are summarized only when ``analysis`` is present, i.e. the
    media was analyzed during this turn.
    """
    sections = [user_text]
    if extracted:
        sections.append(summarize_extracted(extracted))
    if analysis is not None:
        if attachments:
            sections.append(summarize_attachments(attachments))
        sections.append(summarize_analysis(analysis))

    return [
        system_message(assistant_name),
        *history_messages(history),
        {"role": "user", "content": "\n\n".join(s for s in sections if s)},
    ]
