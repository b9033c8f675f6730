"""
Prompt Generator - Weekly Summary Requests

This module provides:
- SYSTEM_PROMPT and the JSON schema the model must answer with
- render_user_prompt() turning a WeeklyData snapshot into the user message
- PromptBuilder producing one BatchRequest per user and week

Everything here is pure: the same WeeklyData always yields the same request.
"""

from typing import Any

from weekly_digest.batch_types import BatchRequest, WeeklyData

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_TOKENS = 1200


# ============================================================
# Prompt content
# ============================================================

SYSTEM_PROMPT = (
    "You write short weekly reflections for a personal todo app. "
    "Given the tasks a person completed and left open during one work week, "
    "write a warm, concrete summary in the second person and group the work "
    "into a few themed notes. Do not invent tasks that are not listed."
)

SUMMARY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {"type": "string"},
        "notes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "summary": {"type": "string"},
                    "tags": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["title", "summary", "tags"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["summary", "notes"],
    "additionalProperties": False,
}


def _todo_line(text: str, tags: tuple[str, ...], extra: str = "") -> str:
    line = f"- {text.strip()}"
    if tags:
        line += f" [{', '.join(tags)}]"
    return line + extra


def render_user_prompt(data: WeeklyData) -> str:
    """Render the user message for one week of data."""
    lines = [
        f"Week {data.week} of {data.year} "
        f"({data.week_start.isoformat()} to {data.week_end.isoformat()}).",
    ]

    if data.is_first_week:
        lines.append("This is the person's first week using the app; welcome them.")

    lines.append("")
    lines.append(f"Completed tasks ({len(data.completed)}):")
    for todo in data.completed:
        extra = " (moved %d times)" % todo.move_count if todo.move_count else ""
        if todo.completed_with_time_box:
            extra += " (time-boxed)"
        lines.append(_todo_line(todo.text, todo.tags, extra))

    lines.append("")
    lines.append(f"Still open ({len(data.incomplete)}):")
    for todo in data.incomplete:
        lines.append(_todo_line(todo.text, todo.tags))

    if data.previous_summary:
        lines.append("")
        lines.append("Last week's summary, for continuity:")
        lines.append(data.previous_summary.strip())

    return "\n".join(lines)


# ============================================================
# Request builder
# ============================================================


class PromptBuilder:
    """Turns WeeklyData into a chat completion batch request."""

    def __init__(self, model: str = DEFAULT_MODEL, max_tokens: int = DEFAULT_MAX_TOKENS):
        self.model = model
        self.max_tokens = max_tokens

    def build(self, data: WeeklyData) -> BatchRequest:
        body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": render_user_prompt(data)},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "weekly_summary",
                    "strict": True,
                    "schema": SUMMARY_SCHEMA,
                },
            },
        }
        return BatchRequest(custom_id=data.custom_id, body=body)

    def preview(self, data: WeeklyData) -> dict[str, Any]:
        """The request as it would appear on its JSONL line, for admin inspection."""
        request = self.build(data)
        return {"custom_id": request.custom_id, "body": request.body}
