from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    ActionItemStatus,
    ConversationThinkLevel,
    InferenceResponseTypes,
    InferenceToolGroups,
    ThinkLevels,
    ToolGroupSelection,
)
from .errors import InvalidStepTransition


class AuthState(BaseModel):
    client_key: str = ""
    key_expiration: Optional[datetime] = None
    user_name: str = ""
    account_name: str = ""
    account_id: str = ""
    user_email: str = ""

    @property
    def is_authenticated(self) -> bool:
        if not self.client_key.strip():
            return False
        if self.key_expiration is None:
            return True
        expires = self.key_expiration
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires > datetime.now(timezone.utc)


class RequiredModelManifestEntry(BaseModel):
    name: str
    file_name: str
    url: str = ""
    is_default: bool = False
    is_multi_modal: bool = False
    has_reasoning: bool = False

    model_config = ConfigDict(frozen=True)


class ModelDownloadInfo(BaseModel):
    name: str
    file_name: str
    url: str = ""
    is_default: bool = False
    is_multi_modal: bool = False
    has_reasoning: bool = False

    @classmethod
    def from_manifest(cls, entry: RequiredModelManifestEntry) -> "ModelDownloadInfo":
        return cls(**entry.model_dump())


class RegisteredModel(BaseModel):
    name: str
    file_name: str
    url: str = ""
    enabled: bool = True
    is_default: bool = False
    is_multi_modal: bool = False
    has_reasoning: bool = False


class HostIdentity(BaseModel):
    host_id: str = ""
    secret_key: str = ""


class ModelSettings(BaseModel):
    model_folder_path: str = "./models"
    models: List[RegisteredModel] = Field(default_factory=list)
    llama_runtime: int = 0
    context_size: int = 2048
    gpu_layer_count: int = -1
    batch_size: int = 512

    model_config = ConfigDict(protected_namespaces=())


class HostSettings(BaseModel):
    host: HostIdentity = Field(default_factory=HostIdentity)
    model: ModelSettings = Field(default_factory=ModelSettings)


class HostDescriptor(BaseModel):
    machine_name: str
    os_description: str
    os_version: str
    region: str


class HostRegistrationRecord(BaseModel):
    host_id: str
    secret_key: str


class UserSettings(BaseModel):
    default_model_name: str = ""
    default_think_level: ConversationThinkLevel = ConversationThinkLevel.BASIC
    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: int = 32000
    system_prompt: str = ""
    enabled_tool_groups_csv: str = ""
    enabled_skill_ids_csv: str = ""
    host_mode_enabled: bool = True
    localhost_mode_enabled: bool = False
    model_folder_path: str = ""
    llama_runtime: Optional[int] = None
    context_size: int = 0
    gpu_layer_count: Optional[int] = None
    batch_size: int = 0

    model_config = ConfigDict(protected_namespaces=())

    def get_enabled_tool_groups(self) -> List[ToolGroupSelection]:
        groups: List[ToolGroupSelection] = []
        for raw in self.enabled_tool_groups_csv.split(","):
            name = raw.strip()
            if not name:
                continue
            try:
                groups.append(ToolGroupSelection[name])
            except KeyError:
                continue
        return groups

    def set_enabled_tool_groups(self, groups: List[ToolGroupSelection]) -> None:
        self.enabled_tool_groups_csv = ",".join(ToolGroupSelection(g).name for g in groups)


class Skill(BaseModel):
    id: str = ""
    name: str = ""
    description: str = ""
    author: str = ""
    version: str = "1.0.0"
    required_tool_groups: List[ToolGroupSelection] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    system_prompt_template: str = ""


class AvailableModel(BaseModel):
    name: str
    enabled: bool = True
    is_multi_modal: bool = False
    has_reasoning: bool = False
    is_default: bool = False
    supported_think_levels: List[ConversationThinkLevel] = Field(default_factory=list)


def supported_think_levels(has_reasoning: bool) -> List[ConversationThinkLevel]:
    levels = [ConversationThinkLevel.BASIC, ConversationThinkLevel.BASIC_WITH_TOOLS]
    if has_reasoning:
        levels.extend([ConversationThinkLevel.CHAIN_OF_THOUGHT, ConversationThinkLevel.TREE_OF_THOUGHT])
    return levels


class AgentConfig(BaseModel):
    model_name: str = ""
    initialization_prompt: str = ""
    think_level: ConversationThinkLevel = ConversationThinkLevel.BASIC
    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: int = 32000
    enabled_tool_groups: List[ToolGroupSelection] = Field(default_factory=list)
    enabled_skills: List[Skill] = Field(default_factory=list)

    model_config = ConfigDict(protected_namespaces=())


# Inference transport shapes


class CreateSessionRequest(BaseModel):
    model_name: str = ""
    initialization_prompt: str = ""
    think_level: ThinkLevels = ThinkLevels.BASIC
    tool_groups: List[InferenceToolGroups] = Field(default_factory=list)

    model_config = ConfigDict(protected_namespaces=())


class CreateSessionResponse(BaseModel):
    inference_id: str
    model_name: str = ""

    model_config = ConfigDict(protected_namespaces=())


class SendRequest(BaseModel):
    inference_id: str
    text: str
    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: int = 32000
    think_level: ThinkLevels = ThinkLevels.BASIC


class SendResponse(BaseModel):
    inference_id: str = ""
    content: str = ""
    type: InferenceResponseTypes = InferenceResponseTypes.TEXT


# Plans


class ActionItem(BaseModel):
    step_number: int = Field(ge=1)
    description: str
    status: ActionItemStatus = ActionItemStatus.PENDING
    result: Optional[str] = None
    error: Optional[str] = None

    def start(self) -> None:
        if self.status != ActionItemStatus.PENDING:
            raise InvalidStepTransition(f"step {self.step_number} cannot start from {self.status.name}")
        self.status = ActionItemStatus.RUNNING

    def complete(self, result: Optional[str] = None) -> None:
        if self.status != ActionItemStatus.RUNNING:
            raise InvalidStepTransition(f"step {self.step_number} cannot complete from {self.status.name}")
        self.status = ActionItemStatus.COMPLETE
        self.result = result
        self.error = None

    def fail(self, error: str) -> None:
        if self.status != ActionItemStatus.RUNNING:
            raise InvalidStepTransition(f"step {self.step_number} cannot fail from {self.status.name}")
        self.status = ActionItemStatus.FAILED
        self.error = error
        self.result = None

    def skip(self) -> None:
        if self.status not in (ActionItemStatus.PENDING, ActionItemStatus.RUNNING):
            raise InvalidStepTransition(f"step {self.step_number} cannot be skipped from {self.status.name}")
        self.status = ActionItemStatus.SKIPPED
        self.result = None
        self.error = None


class ActionPlanStepPayload(BaseModel):
    step_number: int = Field(alias="stepNumber")
    description: str = ""

    model_config = ConfigDict(populate_by_name=True)


class ActionPlanPayload(BaseModel):
    goal: str = ""
    steps: List[ActionPlanStepPayload] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class ActionPlan(BaseModel):
    goal: str
    steps: List[ActionItem] = Field(default_factory=list)

    def add_step(self, description: str) -> ActionItem:
        item = ActionItem(step_number=len(self.steps) + 1, description=description)
        self.steps.append(item)
        return item

    def to_payload(self) -> ActionPlanPayload:
        return ActionPlanPayload(
            goal=self.goal,
            steps=[
                ActionPlanStepPayload(step_number=step.step_number, description=step.description)
                for step in self.steps
            ],
        )


class StreamChunk(BaseModel):
    content: str = ""
    type: str = "Text"
    is_complete: bool = False
    plan: Optional[ActionPlan] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"content": self.content, "type": self.type, "is_complete": self.is_complete}
        if self.plan is not None:
            data["plan"] = self.plan.to_payload().model_dump(by_alias=True)
        return data


# API request bodies


class SendBody(BaseModel):
    text: str
    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: int = 32000
    think_level: ThinkLevels = ThinkLevels.BASIC


class TurnRequest(BaseModel):
    config: AgentConfig = Field(default_factory=AgentConfig)
    text: str


class ParsePlanRequest(BaseModel):
    text: str = ""
    lenient: bool = False


class DownloadRequest(BaseModel):
    name: str
