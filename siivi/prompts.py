from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

BASE_PROMPT = (
    "You are Siivi, a helpful AI assistant that can generate text, write code, solve problems, "
    "and create detailed explanations. When writing code, ALWAYS use proper markdown code blocks "
    "with language specification like ```javascript, ```python, ```html, etc. "
    "Format your responses with markdown for better readability. "
    "Use **bold** for emphasis, lists for organization, and code blocks with syntax highlighting."
)

DEFAULT_PERSONALITY = "casual"

PERSONALITIES = {
    "funny": "Use humor, emojis, and witty responses. Keep things light and entertaining.",
    "professional": "Use formal language, be concise and direct. Focus on accuracy and efficiency.",
    "casual": "Be friendly and conversational. Use a relaxed, approachable tone.",
    "motivational": "Be encouraging and inspiring. Help users achieve their goals with positivity.",
}

COMMANDS = {
    "summarize": "Please provide a concise summary of: {args}",
    "translate": "Please translate the following to the target language: {args}",
    "plan": "Please create a detailed plan or outline for: {args}",
    "mood": "I'd like to log my mood. {args}",
    "remind": "Please help me set a reminder: {args}",
}

_COMMAND_RE = re.compile(r"^/(\w+)\s*(.*)", re.DOTALL)


def get_system_prompt(personality: Optional[str]) -> str:
    style = PERSONALITIES.get(personality or "", PERSONALITIES[DEFAULT_PERSONALITY])
    return f"{BASE_PROMPT} {style}"


def parse_command(message: str) -> Optional[Tuple[str, str]]:
    m = _COMMAND_RE.match(message or "")
    if not m:
        return None
    return m.group(1), m.group(2).strip()


def expand_command(message: str) -> str:
    """Rewrite a leading slash command into a plain instruction.

    Anything that is not a known command, such as a path like "/usr/bin",
    is returned as typed.
    """
    parsed = parse_command(message)
    if parsed is None:
        return message
    command, args = parsed
    template = COMMANDS.get(command)
    return template.format(args=args) if template else message


def prepare_turns(turns: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """Expand a slash command in the last turn, leaving the rest untouched."""
    if not turns:
        return []
    out = [dict(t) for t in turns]
    last = out[-1]
    if last.get("role") == "user":
        last["content"] = expand_command(last.get("content", ""))
    return out
