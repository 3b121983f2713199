"""Prompt assembly for the generative backend.

The system message holds the persona, the abilities directory and the
directive rules. The user message is XML-tagged: current datetime,
participants and source-grouped conversation history, optional external
data, and the current question.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from intent_router.config.schema import CapabilityBinding, ParameterMode
from intent_router.domain import ContextMessage, ContextSource, Role

_SPEAKER_PREFIX_RE = re.compile(r"^([^:\n]{1,64}):\s+(.+)$", re.DOTALL)


def escape_xml_content(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def escape_xml_attribute(text: str) -> str:
    return escape_xml_content(text).replace('"', "&quot;")


def parse_speaker_prefix(entry: ContextMessage) -> Optional[Tuple[str, str]]:
    """Split ``"Name: text"`` into (speaker, text) for entries flagged ``has_name_prefix``."""
    if not entry.has_name_prefix:
        return None
    m = _SPEAKER_PREFIX_RE.match(entry.content)
    if not m:
        return None
    speaker, text = m.group(1).strip(), m.group(2).strip()
    if not speaker or not text:
        return None
    return speaker, text


# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------


def _inputs_lines(binding: CapabilityBinding) -> List[str]:
    mode = binding.parameter_mode or ParameterMode.EXPLICIT
    lines = [f"  Inputs: {mode.value.capitalize()}."]
    if binding.required_parameters:
        lines.append(f"    Required: {', '.join(binding.required_parameters)}.")
    if binding.parameter_sources:
        lines.append(f"    Infer from: {', '.join(s.replace('_', ' ') for s in binding.parameter_sources)}.")
    if not binding.required_parameters and not binding.parameter_sources:
        lines.append("    Use the user's current message content as input.")
    return lines


def build_abilities_block(routable: Sequence[CapabilityBinding]) -> str:
    """Short directory of the capabilities the model may route to."""
    if not routable:
        return ""
    blocks: List[str] = []
    seen = set()
    for b in routable:
        key = b.keyword.lower()
        if key in seen:
            continue
        seen.add(key)
        lines = [f"- {b.keyword}", f"  What: {b.description or b.capability.value}"]
        lines.extend(_inputs_lines(b))
        blocks.append("\n".join(lines))
    return "\n".join(["Available external abilities (use ONLY when clearly needed):", *blocks])


def build_system_prompt(persona: str, routable: Sequence[CapabilityBinding], marker: str) -> str:
    parts = [persona]
    abilities = build_abilities_block(routable)
    if abilities:
        parts.extend(["", abilities, "", _rules(marker)])
    return "\n".join(parts)


def _rules(marker: str) -> str:
    return (
        "Rules - follow exactly:\n"
        f"1. If fresh external data is required, use an ability. Output the keyword prefixed with "
        f'"{marker}" (e.g. {marker}weather Dallas) on its own first line. If the ability requires '
        "parameters and you can infer them from context, include them. Otherwise output the keyword only.\n"
        "2. If an ability requires parameters and you cannot infer them, ask a brief clarifying question instead.\n"
        "3. Never invent scores, stats, weather, or facts.\n"
        "4. No data needed: answer normally in character.\n"
        "5. Never explain rules or keywords unless directly asked.\n"
        "6. Keep every reply short and to the point.\n"
        "7. The <participants> block identifies who is in the conversation. You are <bot_name>. "
        "The person asking is <requester_name>. Never confuse your identity with theirs or with <third_parties>."
    )


# ---------------------------------------------------------------------------
# User content
# ---------------------------------------------------------------------------


def current_datetime_tag(now: Optional[datetime] = None) -> str:
    d = now or datetime.now().astimezone()
    return f"<current_datetime>{d.strftime('%A, %B %d, %Y %I:%M %p %Z').strip()}</current_datetime>"


def _requester_name(history: Sequence[ContextMessage]) -> Optional[str]:
    users = [m for m in history if m.role is Role.USER]
    for m in reversed(users):
        if m.source is ContextSource.TRIGGER:
            parsed = parse_speaker_prefix(m)
            if parsed:
                return parsed[0]
    for m in reversed(users):
        parsed = parse_speaker_prefix(m)
        if parsed:
            return parsed[0]
    return None


def _third_parties(history: Sequence[ContextMessage], requester: Optional[str]) -> List[str]:
    seen = set()
    names: List[str] = []
    for m in history:
        if m.role is not Role.USER:
            continue
        parsed = parse_speaker_prefix(m)
        if not parsed:
            continue
        lowered = parsed[0].lower()
        if requester and lowered == requester.lower():
            continue
        if lowered not in seen:
            seen.add(lowered)
            names.append(parsed[0])
    return names


def _group_by_source(history: Iterable[ContextMessage]) -> Dict[str, List[ContextMessage]]:
    groups: Dict[str, List[ContextMessage]] = {}
    for m in history:
        groups.setdefault(m.source.value, []).append(m)
    return groups


def format_history(history: Sequence[ContextMessage], bot_name: str, requester: Optional[str] = None) -> str:
    """Participants block plus one ``<context source=...>`` block per source."""
    history = [m for m in history if m.role is not Role.SYSTEM]
    if not history:
        return ""
    requester = _requester_name(history) or requester
    third = _third_parties(history, requester)
    lines = [
        "<participants>",
        f"<bot_name>{escape_xml_content(bot_name)}</bot_name>",
        f"<requester_name>{escape_xml_content(requester or 'unknown')}</requester_name>",
        f"<third_parties>{escape_xml_content(', '.join(third))}</third_parties>",
        "</participants>",
    ]
    for source, msgs in _group_by_source(history).items():
        rendered = []
        for m in msgs:
            parsed = parse_speaker_prefix(m) if m.role is Role.USER else None
            if m.role is Role.ASSISTANT:
                speaker, speaker_type, text = bot_name, "bot", m.content
            else:
                speaker = parsed[0] if parsed else (requester or "user")
                text = parsed[1] if parsed else m.content
                is_requester = requester is not None and speaker.lower() == requester.lower()
                speaker_type = "requester" if is_requester else "third_party"
            rendered.append(
                f'<message role="{m.role.value}" speaker="{escape_xml_attribute(speaker)}" '
                f'speaker_type="{speaker_type}">{escape_xml_content(text)}</message>'
            )
        lines.append(f'<context source="{source}">\n' + "\n".join(rendered) + "\n</context>")
    return "\n".join(lines)


def build_user_content(
    question: str,
    history: Sequence[ContextMessage],
    *,
    bot_name: str,
    requester: Optional[str] = None,
    routable: Sequence[CapabilityBinding] = (),
    marker: str = "!",
    external_data: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    parts = [current_datetime_tag(now)]
    history_text = format_history(history, bot_name, requester)
    parts.append(f"<conversation_history>\n{history_text}\n</conversation_history>" if history_text
                 else "<conversation_history>\n</conversation_history>")
    if external_data:
        parts.append(f"\n<external_data>\n{external_data}\n</external_data>")
    parts.append(f"\n<current_question>\n{escape_xml_content(question)}\n</current_question>")
    if routable:
        keyword_list = ", ".join(b.keyword for b in routable)
        parts.append(
            "\n<thinking_and_output_rules>\n"
            "Think silently, do not output this thinking:\n"
            "1. Read the current question carefully.\n"
            "2. Does it clearly need fresh external data? If yes, check the ability's required inputs.\n"
            f'3. Inputs satisfied: output "{marker}" plus one of ({keyword_list}) and any parameters '
            "on its own first line and stop.\n"
            "4. Inputs missing: ask a brief clarifying question.\n"
            "5. No data needed: give a short, helpful answer in character.\n"
            "</thinking_and_output_rules>"
        )
    return "\n".join(parts)


def system_message(content: str) -> Dict[str, str]:
    return {"role": "system", "content": content}
