from enum import IntEnum


# Local vocabulary


class ConversationThinkLevel(IntEnum):
    BASIC = 0
    BASIC_WITH_TOOLS = 1
    CHAIN_OF_THOUGHT = 2
    TREE_OF_THOUGHT = 3
    AGENT = 4


class ToolGroupSelection(IntEnum):
    INFORMATION_TOOLS = 0
    FILE_TOOLS = 1
    MATH_TOOLS = 2
    COMMUNICATION_TOOLS = 3
    CODING_TOOLS = 4
    MEDIA_TOOLS = 5
    INTEGRATION_TOOLS = 6
    SOCIAL_TOOLS = 7
    SHELL_TOOLS = 8
    SCREEN_TOOLS = 9
    INPUT_TOOLS = 10
    CLIPBOARD_TOOLS = 11
    BROWSER_TOOLS = 12
    WINDOW_TOOLS = 13
    SYSTEM_TOOLS = 14
    GIT_TOOLS = 15


class ChatMessageType(IntEnum):
    TEXT = 0
    THINKING = 1
    TOOLING = 2
    TOOL_CONTENT = 3
    ERROR = 4
    IMAGE = 5
    AUDIO = 6


class ActionItemStatus(IntEnum):
    PENDING = 0
    RUNNING = 1
    COMPLETE = 2
    FAILED = 3
    SKIPPED = 4


# Wire vocabulary


class ThinkLevels(IntEnum):
    BASIC = 0
    BASIC_WITH_TOOLS = 1
    CHAIN_OF_THOUGHT = 2
    TREE_OF_THOUGHT = 3


class InferenceToolGroups(IntEnum):
    INFORMATION_TOOLS = 0
    FILE_TOOLS = 1
    MATH_TOOLS = 2
    COMMUNICATION_TOOLS = 3
    CODING_TOOLS = 4
    MEDIA_TOOLS = 5
    INTEGRATION_TOOLS = 6
    SOCIAL_TOOLS = 7


class InferenceResponseTypes(IntEnum):
    TEXT = 0
    THINKING = 1
    TOOLING = 2
    TOOL_CONTENT = 3
    ERROR = 4
    IMAGE = 5
    AUDIO = 6


class InferenceCloseReasons(IntEnum):
    CLOSE_REQUESTED_BY_CLIENT = 0
    SESSION_TIMEOUT = 1
    ERROR = 2
