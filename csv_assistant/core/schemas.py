from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field

Row = Dict[str, Any]

ColumnType = Literal['numerical', 'categorical', 'date', 'time', 'currency', 'percentage']
NUMERIC_COLUMN_TYPES = frozenset({'numerical', 'currency', 'percentage'})
GROUPING_COLUMN_TYPES = frozenset({'categorical', 'date', 'time'})

AGGREGATIONS = ('sum', 'count', 'avg')
AGGREGATE_CHART_TYPES = ('bar', 'line', 'pie', 'doughnut')
CHART_TYPES = AGGREGATE_CHART_TYPES + ('scatter', 'combo')
DOM_TOOLS = ('highlightCard', 'changeCardChartType', 'showCardData', 'filterCard')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for models exchanged with the language model (camelCase on the wire)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ColumnProfile(WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    name: str
    type: ColumnType
    unique_values: Optional[int] = Field(default=None, alias="uniqueValues")
    value_range: Optional[Tuple[float, float]] = Field(default=None, alias="valueRange")
    missing_percentage: Optional[float] = Field(default=None, alias="missingPercentage")


class AnalysisPlan(WireModel):
    """
    A declarative chart description.

    Fields are optional because plans come from the model; structural rules
    live in the validator so that every missing field can be reported.
    """
    chart_type: Optional[str] = Field(default=None, alias="chartType")
    title: Optional[str] = None
    description: Optional[str] = None
    aggregation: Optional[str] = None
    group_by_column: Optional[str] = Field(default=None, alias="groupByColumn")
    value_column: Optional[str] = Field(default=None, alias="valueColumn")
    x_value_column: Optional[str] = Field(default=None, alias="xValueColumn")
    y_value_column: Optional[str] = Field(default=None, alias="yValueColumn")
    secondary_value_column: Optional[str] = Field(default=None, alias="secondaryValueColumn")
    secondary_aggregation: Optional[str] = Field(default=None, alias="secondaryAggregation")
    default_top_n: Optional[int] = Field(default=None, alias="defaultTopN")
    default_hide_others: Optional[bool] = Field(default=None, alias="defaultHideOthers")


class PlanReview(WireModel):
    plan: AnalysisPlan
    aggregated_sample: List[Row] = Field(alias="aggregatedSample")


class DataPreparationPlan(WireModel):
    explanation: str = ""
    function_body: Optional[str] = Field(default=None, alias="jsFunctionBody")
    output_columns: List[ColumnProfile] = Field(default_factory=list, alias="outputColumns")


class CleaningRule(WireModel):
    column: str
    contains: Optional[str] = None
    equals: Optional[str] = None
    starts_with: Optional[str] = Field(default=None, alias="startsWith")


class CleaningPlan(WireModel):
    exclude_rows: List[CleaningRule] = Field(default_factory=list, alias="excludeRows")


class UnpivotPlan(WireModel):
    index_columns: List[str] = Field(alias="indexColumns")
    value_columns: List[str] = Field(alias="valueColumns")
    variable_column_name: str = Field(alias="variableColumnName")
    value_column_name: str = Field(alias="valueColumnName")


class DataStructureAnalysis(WireModel):
    format: Literal['tidy', 'crosstab'] = 'tidy'
    unpivot_plan: Optional[UnpivotPlan] = Field(default=None, alias="unpivotPlan")


class SpreadsheetFilter(WireModel):
    explanation: str
    function_body: str = Field(alias="jsFunctionBody")


# --- AI actions -----------------------------------------------------------

class DomAction(WireModel):
    tool_name: Optional[str] = Field(default=None, alias="toolName")
    args: Dict[str, Any] = Field(default_factory=dict)


class CodePayload(WireModel):
    explanation: Optional[str] = None
    function_body: Optional[str] = Field(default=None, alias="jsFunctionBody")


class FilterArgs(WireModel):
    query: Optional[str] = None


class ClarificationOption(WireModel):
    label: Optional[Any] = None
    value: Optional[Any] = None


class ClarificationRequest(WireModel):
    question: Optional[str] = None
    pending_plan: Optional[Dict[str, Any]] = Field(default=None, alias="pendingPlan")
    target_property: Optional[str] = Field(default=None, alias="targetProperty")
    options: Optional[List[ClarificationOption]] = None


class ActionBase(WireModel):
    response_type: str = Field(alias="responseType")
    thought: Optional[str] = None


class TextResponseAction(ActionBase):
    response_type: Literal['text_response'] = Field(default='text_response', alias="responseType")
    text: Optional[str] = None
    card_id: Optional[str] = Field(default=None, alias="cardId")


class PlanCreationAction(ActionBase):
    response_type: Literal['plan_creation'] = Field(default='plan_creation', alias="responseType")
    plan: Optional[AnalysisPlan] = None


class DomActionAction(ActionBase):
    response_type: Literal['dom_action'] = Field(default='dom_action', alias="responseType")
    dom_action: Optional[DomAction] = Field(default=None, alias="domAction")


class ExecuteCodeAction(ActionBase):
    response_type: Literal['execute_js_code'] = Field(default='execute_js_code', alias="responseType")
    code: Optional[CodePayload] = None


class FilterSpreadsheetAction(ActionBase):
    response_type: Literal['filter_spreadsheet'] = Field(default='filter_spreadsheet', alias="responseType")
    args: Optional[FilterArgs] = None


class ClarificationRequestAction(ActionBase):
    response_type: Literal['clarification_request'] = Field(default='clarification_request', alias="responseType")
    clarification: Optional[ClarificationRequest] = None


class UnknownAction(ActionBase):
    """Placeholder for a responseType outside the supported set."""
    response_type: str = Field(default="", alias="responseType")


AiAction = Union[
    TextResponseAction,
    PlanCreationAction,
    DomActionAction,
    ExecuteCodeAction,
    FilterSpreadsheetAction,
    ClarificationRequestAction,
    UnknownAction,
]

ACTION_TYPES = {
    'text_response': TextResponseAction,
    'plan_creation': PlanCreationAction,
    'dom_action': DomActionAction,
    'execute_js_code': ExecuteCodeAction,
    'filter_spreadsheet': FilterSpreadsheetAction,
    'clarification_request': ClarificationRequestAction,
}


class ValidationResult(BaseModel):
    is_valid: bool
    errors: str = ""


class ValidationContext(BaseModel):
    card_ids: Sequence[str] = ()


# --- Session state --------------------------------------------------------

class CardContext(WireModel):
    id: str
    title: str
    aggregated_data_sample: List[Row] = Field(alias="aggregatedDataSample")


class CardFilter(WireModel):
    column: str
    values: List[Any]


class AnalysisCard(BaseModel):
    id: str
    plan: AnalysisPlan
    aggregated_data: List[Row]
    summary: str = ""
    display_chart_type: str
    is_data_visible: bool = False
    top_n: Optional[int] = None
    hide_others: bool = False
    hidden_labels: List[str] = Field(default_factory=list)
    filter: Optional[CardFilter] = None


class ChatMessage(BaseModel):
    sender: Literal['user', 'ai']
    text: str
    timestamp: datetime = Field(default_factory=utcnow)
    type: Literal[
        'user_message', 'ai_message', 'ai_plan_start', 'ai_thinking',
        'ai_clarification', 'ai_proactive_insight'
    ] = 'ai_message'
    card_id: Optional[str] = None
    is_error: bool = False
    clarification: Optional[ClarificationRequest] = None


class ProgressMessage(BaseModel):
    text: str
    type: Literal['system', 'error'] = 'system'
    timestamp: datetime = Field(default_factory=utcnow)


class MemoryDocument(BaseModel):
    id: str
    text: str


class SessionSnapshot(BaseModel):
    """Everything the persistence collaborator needs to restore a session."""
    session_id: str
    filename: Optional[str] = None
    rows: List[Row] = Field(default_factory=list)
    column_profiles: List[ColumnProfile] = Field(default_factory=list)
    analysis_cards: List[AnalysisCard] = Field(default_factory=list)
    chat_history: List[ChatMessage] = Field(default_factory=list)
    progress_messages: List[ProgressMessage] = Field(default_factory=list)
    final_summary: Optional[str] = None
    core_analysis_summary: Optional[str] = None
    data_preparation_plan: Optional[DataPreparationPlan] = None
    initial_data_sample: List[Row] = Field(default_factory=list)
    memory_documents: List[MemoryDocument] = Field(default_factory=list)
    spreadsheet_filter: Optional[SpreadsheetFilter] = None
    is_spreadsheet_visible: bool = True
    pending_clarification: Optional[ClarificationRequest] = None
    highlighted_card_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ChatTurnResult(BaseModel):
    status: Literal['completed', 'awaiting_clarification', 'validation_failed', 'failed']
    attempts: int = 0
    executed_actions: int = 0
    error: Optional[str] = None
