"""Built-in step implementations.

- Control flow: ConditionStep
- Data shaping: TransformStep, ListMapStep, StringFormatStep, DataTransformStep, ContextMergeStep
- Records: ModelQueryStep, ModelCreateStep, ModelUpdateStep, ModelDeleteStep,
  FragmentCreateStep, FragmentQueryStep, FragmentUpdateStep, DatabaseUpdateStep
- External calls: AIGenerateStep, ToolCallStep, JobDispatchStep
- Misc: ValidateStep, TextParseStep, ResponsePanelStep, NotifyStep
"""

from fragments.dsl.steps.ai import AIGenerateStep
from fragments.dsl.steps.condition import ConditionStep
from fragments.dsl.steps.context_merge import ContextMergeStep
from fragments.dsl.steps.data_transform import DataTransformStep
from fragments.dsl.steps.database import DatabaseUpdateStep
from fragments.dsl.steps.fragment import FragmentCreateStep, FragmentQueryStep, FragmentUpdateStep
from fragments.dsl.steps.job import JobDispatchStep
from fragments.dsl.steps.list_map import ListMapStep
from fragments.dsl.steps.model import ModelCreateStep, ModelDeleteStep, ModelQueryStep, ModelUpdateStep
from fragments.dsl.steps.response import NotifyStep, ResponsePanelStep
from fragments.dsl.steps.string_format import StringFormatStep
from fragments.dsl.steps.text_parse import TextParseStep
from fragments.dsl.steps.tool import ToolCallStep
from fragments.dsl.steps.transform import TransformStep
from fragments.dsl.steps.utility import UtilityStep
from fragments.dsl.steps.validate import ValidateStep

#: Step classes registered by every new StepFactory.
BUILTIN_STEPS = (
    ConditionStep,
    TransformStep,
    ListMapStep,
    StringFormatStep,
    DataTransformStep,
    ContextMergeStep,
    ModelQueryStep,
    ModelCreateStep,
    ModelUpdateStep,
    ModelDeleteStep,
    FragmentCreateStep,
    FragmentQueryStep,
    FragmentUpdateStep,
    DatabaseUpdateStep,
    AIGenerateStep,
    ToolCallStep,
    ValidateStep,
    JobDispatchStep,
    TextParseStep,
    ResponsePanelStep,
    NotifyStep,
)

__all__ = [
    "AIGenerateStep",
    "BUILTIN_STEPS",
    "ConditionStep",
    "ContextMergeStep",
    "DataTransformStep",
    "DatabaseUpdateStep",
    "FragmentCreateStep",
    "FragmentQueryStep",
    "FragmentUpdateStep",
    "JobDispatchStep",
    "ListMapStep",
    "ModelCreateStep",
    "ModelDeleteStep",
    "ModelQueryStep",
    "ModelUpdateStep",
    "NotifyStep",
    "ResponsePanelStep",
    "StringFormatStep",
    "TextParseStep",
    "ToolCallStep",
    "TransformStep",
    "UtilityStep",
    "ValidateStep",
]
