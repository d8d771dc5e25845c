"""Prompt construction for every generation call in a turn."""

import json
from typing import Any, Optional

from concierge.llm.base import ChatMessage
from concierge.schemas.conversation_schema import Turn


def format_transcript(turns: list[Turn]) -> str:
    if not turns:
        return "(no previous messages)"
    return "\n".join(f"{t.role.value}: {t.text}" for t in turns)


def build_extraction_messages(
    message: str,
    normalized: str,
    today: str,
    weekday: str,
    last_assistant: Optional[str],
    known: dict[str, Any],
) -> list[ChatMessage]:
    """Ask for booking fields explicitly present in the current message only."""
    system = f"""You extract restaurant booking details from ONE guest message.

Today is {weekday}, {today} (restaurant local time).

Return a JSON object with any of these keys, ONLY for values the guest states
in THIS message:
  "name": guest name as written
  "phone": phone number as written
  "date": absolute date YYYY-MM-DD (resolve "tomorrow", weekdays, etc. from today)
  "time": 24-hour HH:MM
  "party_size": integer number of guests
  "comments": special requests (allergies, occasion, seating)
  "confidence": number 0..1 for the extraction overall

RULES:
- Never repeat values that are already known unless the guest restates or corrects them.
- Never guess. If a value is not in the message, leave the key out.
- A time range such as "7-9pm" is NOT a time; leave "time" out.
- Return {{}} when the message has no booking details."""

    context = [f"Already known (do not repeat): {json.dumps(known, ensure_ascii=False)}"]
    if last_assistant:
        context.append(f"Assistant's previous message: {last_assistant}")
    context.append(f"Guest message: {message}")
    if normalized != message:
        context.append(f"Same message with times normalized: {normalized}")
    return [ChatMessage("system", system), ChatMessage("user", "\n".join(context))]


def build_language_messages(message: str, recent: list[Turn], current: str) -> list[ChatMessage]:
    system = """Identify the language the guest is writing in.

Return JSON: {"language": "<ISO 639-1 code>", "confidence": 0..1, "reasoning": "<short>"}.
Short or ambiguous messages (numbers, "ok") should get low confidence."""
    user = (
        f"Current conversation language: {current}\n"
        f"Recent messages:\n{format_transcript(recent)}\n\n"
        f"New guest message: {message}"
    )
    return [ChatMessage("system", system), ChatMessage("user", user)]


def build_overseer_messages(
    message: str,
    recent: list[Turn],
    current_persona: str,
    draft: dict[str, Any],
    has_existing_context: bool,
    availability_failure: Optional[str],
) -> list[ChatMessage]:
    system = """You route a restaurant reservation chat to the right specialist.

Specialists:
  "new_booking": gathers details and books a new table
  "existing_booking": finds, changes, or cancels an existing reservation
  "availability": searches alternative times after a failed availability check

Return JSON: {"persona": "<specialist>", "is_new_booking_request": true|false,
"reasoning": "<short>"}.

RULES:
- Keep the current specialist when the guest is continuing the same task.
- "is_new_booking_request" is true only when the guest clearly starts a
  brand-new, separate booking (not when correcting the current one)."""
    user = (
        f"Current specialist: {current_persona}\n"
        f"Booking details gathered so far: {json.dumps(draft, ensure_ascii=False)}\n"
        f"Existing reservation in context: {'yes' if has_existing_context else 'no'}\n"
        f"Recent failed availability check: {availability_failure or 'none'}\n"
        f"Recent messages:\n{format_transcript(recent)}\n\n"
        f"New guest message: {message}"
    )
    return [ChatMessage("system", system), ChatMessage("user", user)]


def build_confirmation_classifier_messages(
    message: str, summary: str, recent: list[Turn]
) -> list[ChatMessage]:
    system = """The assistant asked the guest to confirm an action. Classify the reply.

Return JSON: {"decision": "affirmative" | "negative" | "unclear", "confidence": 0..1}.
Anything that is not a clear yes or a clear no is "unclear"."""
    user = (
        f"Question asked: {summary}\n"
        f"Recent messages:\n{format_transcript(recent)}\n\n"
        f"Guest reply: {message}"
    )
    return [ChatMessage("system", system), ChatMessage("user", user)]


def build_name_choice_messages(message: str, db_name: str, request_name: str) -> list[ChatMessage]:
    system = f"""The guest was asked which of two names to use for a reservation:
  1) "{db_name}" (name already on file)
  2) "{request_name}" (name given for this booking)

Map the reply to exactly one of the two strings above, copied character for
character. Phrases like "I am X", "use the new one", "keep the first name"
are valid answers.

Return JSON: {{"choice": "<exact name or null>", "confidence": 0..1}}."""
    return [ChatMessage("system", system), ChatMessage("user", f"Guest reply: {message}")]


def build_final_reply_messages(
    system_prompt: str,
    recent: list[Turn],
    message: str,
    draft_reply: str,
    tool_messages: list[str],
    language: str,
) -> list[ChatMessage]:
    """Second pass after actions ran: rewrite the reply with the tool results."""
    results = "\n".join(tool_messages)
    system = (
        f"{system_prompt}\n\nTool results for this turn:\n{results}\n\n"
        f"Write the reply to the guest in language '{language}'. Use only facts from the "
        "tool results and the conversation. Reply with plain text, no JSON."
    )
    messages = [ChatMessage("system", system)]
    for turn in recent:
        messages.append(ChatMessage(turn.role.value, turn.text))
    messages.append(ChatMessage("user", message))
    if draft_reply:
        messages.append(ChatMessage("assistant", draft_reply))
        messages.append(ChatMessage("user", "(Revise your reply using the tool results above.)"))
    return messages
