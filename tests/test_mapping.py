import pytest

from localinfer.enums import (
    ChatMessageType,
    ConversationThinkLevel,
    InferenceResponseTypes,
    InferenceToolGroups,
    ThinkLevels,
    ToolGroupSelection,
)
from localinfer.mapping import from_response_type, from_wire_think_level, to_wire_think_level, to_wire_tool_group


@pytest.mark.parametrize(
    "level",
    [
        ConversationThinkLevel.BASIC,
        ConversationThinkLevel.BASIC_WITH_TOOLS,
        ConversationThinkLevel.CHAIN_OF_THOUGHT,
        ConversationThinkLevel.TREE_OF_THOUGHT,
    ],
)
def test_think_level_round_trip_is_identity(level):
    assert from_wire_think_level(to_wire_think_level(level)) == level


def test_agent_think_level_is_lossy():
    assert to_wire_think_level(ConversationThinkLevel.AGENT) == ThinkLevels.BASIC_WITH_TOOLS
    assert from_wire_think_level(to_wire_think_level(ConversationThinkLevel.AGENT)) == (
        ConversationThinkLevel.BASIC_WITH_TOOLS
    )


@pytest.mark.parametrize("value", [99, -1, "Agent", None, 2.5, [1], True])
def test_unknown_inputs_map_to_defaults(value):
    assert to_wire_think_level(value) == ThinkLevels.BASIC
    assert from_wire_think_level(value) == ConversationThinkLevel.BASIC
    assert to_wire_tool_group(value) == InferenceToolGroups.INFORMATION_TOOLS
    assert from_response_type(value) == ChatMessageType.TEXT


def test_raw_ints_are_accepted():
    assert to_wire_think_level(2) == ThinkLevels.CHAIN_OF_THOUGHT
    assert from_response_type(1) == ChatMessageType.THINKING


def test_tool_groups_with_wire_equivalent():
    assert to_wire_tool_group(ToolGroupSelection.FILE_TOOLS) == InferenceToolGroups.FILE_TOOLS
    assert to_wire_tool_group(ToolGroupSelection.SOCIAL_TOOLS) == InferenceToolGroups.SOCIAL_TOOLS


@pytest.mark.parametrize(
    "group",
    [
        ToolGroupSelection.SHELL_TOOLS,
        ToolGroupSelection.SCREEN_TOOLS,
        ToolGroupSelection.INPUT_TOOLS,
        ToolGroupSelection.CLIPBOARD_TOOLS,
        ToolGroupSelection.BROWSER_TOOLS,
        ToolGroupSelection.WINDOW_TOOLS,
        ToolGroupSelection.SYSTEM_TOOLS,
        ToolGroupSelection.GIT_TOOLS,
    ],
)
def test_local_only_tool_groups_fall_back(group):
    assert to_wire_tool_group(group) == InferenceToolGroups.INFORMATION_TOOLS


def test_every_response_type_maps_to_its_message_type():
    for response_type in InferenceResponseTypes:
        assert from_response_type(response_type).name == response_type.name
