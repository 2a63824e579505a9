from typing import Any, Dict, Hashable, TypeVar

from .enums import (
    ChatMessageType,
    ConversationThinkLevel,
    InferenceResponseTypes,
    InferenceToolGroups,
    ThinkLevels,
    ToolGroupSelection,
)


T = TypeVar("T")

# AGENT has no richer wire level; the round trip comes back as BASIC_WITH_TOOLS.
_THINK_TO_WIRE: Dict[ConversationThinkLevel, ThinkLevels] = {
    ConversationThinkLevel.BASIC: ThinkLevels.BASIC,
    ConversationThinkLevel.BASIC_WITH_TOOLS: ThinkLevels.BASIC_WITH_TOOLS,
    ConversationThinkLevel.CHAIN_OF_THOUGHT: ThinkLevels.CHAIN_OF_THOUGHT,
    ConversationThinkLevel.TREE_OF_THOUGHT: ThinkLevels.TREE_OF_THOUGHT,
    ConversationThinkLevel.AGENT: ThinkLevels.BASIC_WITH_TOOLS,
}

_THINK_FROM_WIRE: Dict[ThinkLevels, ConversationThinkLevel] = {
    ThinkLevels.BASIC: ConversationThinkLevel.BASIC,
    ThinkLevels.BASIC_WITH_TOOLS: ConversationThinkLevel.BASIC_WITH_TOOLS,
    ThinkLevels.CHAIN_OF_THOUGHT: ConversationThinkLevel.CHAIN_OF_THOUGHT,
    ThinkLevels.TREE_OF_THOUGHT: ConversationThinkLevel.TREE_OF_THOUGHT,
}

_TOOL_GROUP_TO_WIRE: Dict[ToolGroupSelection, InferenceToolGroups] = {
    ToolGroupSelection.INFORMATION_TOOLS: InferenceToolGroups.INFORMATION_TOOLS,
    ToolGroupSelection.FILE_TOOLS: InferenceToolGroups.FILE_TOOLS,
    ToolGroupSelection.MATH_TOOLS: InferenceToolGroups.MATH_TOOLS,
    ToolGroupSelection.COMMUNICATION_TOOLS: InferenceToolGroups.COMMUNICATION_TOOLS,
    ToolGroupSelection.CODING_TOOLS: InferenceToolGroups.CODING_TOOLS,
    ToolGroupSelection.MEDIA_TOOLS: InferenceToolGroups.MEDIA_TOOLS,
    ToolGroupSelection.INTEGRATION_TOOLS: InferenceToolGroups.INTEGRATION_TOOLS,
    ToolGroupSelection.SOCIAL_TOOLS: InferenceToolGroups.SOCIAL_TOOLS,
}

_RESPONSE_TO_MESSAGE: Dict[InferenceResponseTypes, ChatMessageType] = {
    InferenceResponseTypes.TEXT: ChatMessageType.TEXT,
    InferenceResponseTypes.THINKING: ChatMessageType.THINKING,
    InferenceResponseTypes.TOOLING: ChatMessageType.TOOLING,
    InferenceResponseTypes.TOOL_CONTENT: ChatMessageType.TOOL_CONTENT,
    InferenceResponseTypes.ERROR: ChatMessageType.ERROR,
    InferenceResponseTypes.IMAGE: ChatMessageType.IMAGE,
    InferenceResponseTypes.AUDIO: ChatMessageType.AUDIO,
}


def _lookup(table: Dict[Any, T], value: Any, default: T) -> T:
    if isinstance(value, bool) or not isinstance(value, Hashable):
        return default
    try:
        return table.get(value, default)
    except TypeError:
        return default


def to_wire_think_level(level: Any) -> ThinkLevels:
    return _lookup(_THINK_TO_WIRE, level, ThinkLevels.BASIC)


def from_wire_think_level(level: Any) -> ConversationThinkLevel:
    return _lookup(_THINK_FROM_WIRE, level, ConversationThinkLevel.BASIC)


def to_wire_tool_group(group: Any) -> InferenceToolGroups:
    """Local-only groups (shell, screen, git, ...) have no wire slot and fall back to information tools."""
    return _lookup(_TOOL_GROUP_TO_WIRE, group, InferenceToolGroups.INFORMATION_TOOLS)


def from_response_type(response_type: Any) -> ChatMessageType:
    return _lookup(_RESPONSE_TO_MESSAGE, response_type, ChatMessageType.TEXT)
