"""System prompt assembly for the chat path."""

from __future__ import annotations

from jinja2 import Environment, StrictUndefined

from chatledger.models.session import MembershipTier

_STATUS_LABELS: dict[str, str] = {
    MembershipTier.STANDARD: "Standard User",
    MembershipTier.DIAMOND: "Diamond Member",
    MembershipTier.LIFETIME: "Lifetime Diamond",
}

SYSTEM_PROMPT_TEMPLATE = """\
[YOUR CURRENT PERSONA]
{{ persona }}

[METADATA - DO NOT REVEAL]
- Current User: {{ display_name }}
- Status: {{ status }}
- Context: {{ "Group Chat (Multiple people)" if is_group else "Direct Message (Private)" }}

[INSTRUCTIONS]
1. You are interacting with "{{ display_name }}".
2. USE this information to tailor your tone (e.g. be more respectful to Diamond members).
3. DO NOT mention their Name or Status in every message. Only use it if it is naturally relevant.
4. DO NOT start every sentence with their name. Speak naturally."""

_env = Environment(undefined=StrictUndefined, keep_trailing_newline=False, autoescape=False)
_template = _env.from_string(SYSTEM_PROMPT_TEMPLATE)


def build_system_prompt(
    persona: str,
    *,
    display_name: str,
    tier: str = MembershipTier.STANDARD,
    is_group: bool = False,
) -> str:
    """
    Render the system prompt sent ahead of a context's history.

    Args:
        persona: The context's effective personality, usually from
            ``HistoryManager.get_system_prompt()``.
        display_name: Name of the user who issued the command.
        tier: Membership tier name; unknown tiers are shown as-is.
        is_group: Whether the conversation is a group/channel rather than a DM.
    """
    return _template.render(
        persona=persona.strip(),
        display_name=display_name,
        status=_STATUS_LABELS.get(str(tier), str(tier)),
        is_group=is_group,
    ).strip()
