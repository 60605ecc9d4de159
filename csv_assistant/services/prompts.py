"""
Prompt templates.

User-controlled free text (cell values, chat messages, titles) passes through
sanitize_for_prompt before it is interpolated. Column names are quoted as JSON
strings instead, since plans must name them exactly.
"""
import json
from typing import Any, Dict, List, Optional, Sequence
from csv_assistant.core.sanitization import quote_column_name, sanitize_for_prompt
from csv_assistant.core.schemas import (
    AnalysisCard, CardContext, ChatMessage, ColumnProfile, DataPreparationPlan, PlanReview, Row
)

SYSTEM_PLAN_CANDIDATES = (
    "You are a senior business intelligence analyst. Generate a diverse list of insightful "
    "analysis plan candidates for a dataset. Respond with a single JSON object with a key "
    "\"plans\" holding an array of plan objects, and nothing else."
)

SYSTEM_PLAN_REVIEW = (
    "You are a quality review data analyst. Review proposed analysis plans together with a sample "
    "of their aggregated data. Keep ONLY the insightful, readable charts and configure their best "
    "default view. Respond with a single JSON object with a key \"plans\" holding the kept plans."
)

SYSTEM_DATA_STRUCTURE = "You are a data structure analyst. Respond with a single JSON object, and nothing else."
SYSTEM_CLEANING = "You are a data quality analyst. Respond with a single JSON object, and nothing else."
SYSTEM_DATA_PREPARATION = (
    "You are a data engineer who writes small, correct Python functions that reshape tabular data. "
    "Respond with a single JSON object, and nothing else."
)
SYSTEM_FILTER = (
    "You are an expert data analyst. Convert a natural language query into a Python row predicate. "
    "Respond with a single JSON object, and nothing else."
)
SYSTEM_SUMMARY = "You are a business intelligence analyst. Concise, interpretive insights only."
SYSTEM_STRATEGIST = "You are a senior business strategist. Synthesize findings; never just repeat them."
SYSTEM_CHAT = (
    "You are a helpful data analysis assistant that acts on a live dashboard by emitting a sequence "
    "of actions. Respond with a single JSON object with an \"actions\" array, and nothing else."
)

MAX_SUMMARY_ROWS = 10


def _safe_value(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_for_prompt(value, 100)
    return value


def safe_rows(rows: Sequence[Row]) -> List[Row]:
    """Sanitize string values of rows headed for a prompt; keys are column names and stay exact."""
    return [{str(k): _safe_value(v) for k, v in row.items()} for row in rows]


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str, ensure_ascii=False)


def _names(names: Sequence[str]) -> str:
    return ', '.join(quote_column_name(n) for n in names) or '(none)'


def _column_list(columns: Sequence[ColumnProfile]) -> str:
    return '\n'.join(f"- {quote_column_name(c.name)} ({c.type})" for c in columns) or '(none)'


def _language_instruction(language: str) -> str:
    if language == 'Mandarin':
        return ("Provide the summary in two languages separated by '---'.\n"
                "Format: English Summary --- Mandarin Summary")
    return f"Write the response in {language}."


def candidate_plans_prompt(grouping: Sequence[str], numeric: Sequence[str],
                           sample: Sequence[Row], num_plans: int) -> str:
    return f"""Dataset columns:
- Categorical (group by these): {_names(grouping)}
- Numerical (aggregate these): {_names(numeric)}

Sample data:
{_dump(safe_rows(sample))}

Generate {num_plans} diverse and meaningful analysis plans.
Rules:
- chartType is one of bar, line, pie, doughnut, scatter, combo.
- Use 'line' for time trends, 'pie'/'doughnut' for part-to-whole with few categories, 'bar' otherwise.
- aggregation is one of sum, count, avg. 'count' needs no valueColumn; 'sum' and 'avg' need a numerical valueColumn.
- groupByColumn must be a categorical column. Avoid grouping by unique identifiers.
- 'scatter' needs xValueColumn and yValueColumn and must NOT include aggregation or groupByColumn.
- 'combo' needs groupByColumn, valueColumn, aggregation, secondaryValueColumn and secondaryAggregation.
Return {{"plans": [...]}}."""


def refine_plans_prompt(reviews: Sequence[PlanReview]) -> str:
    payload = [
        {"plan": r.plan.to_wire(), "aggregatedSample": safe_rows(r.aggregated_sample)}
        for r in reviews
    ]
    return f"""Here are candidate analysis plans, each with a sample of its aggregated result:
{_dump(payload)}

For each plan decide whether the chart is insightful and readable:
- Discard charts with a single category, near-identical values, or meaningless groupings.
- For charts with many categories set defaultTopN (e.g. 8) and, if the long tail is noise, defaultHideOthers.
- Improve titles and descriptions where helpful. Do not change column names.
Return {{"plans": [...]}} containing ONLY the plan objects you keep."""


def data_structure_prompt(columns: Sequence[ColumnProfile], sample: Sequence[Row]) -> str:
    return f"""Decide whether this dataset is 'tidy' (each column a variable) or 'crosstab'
(some column headers are values such as years, quarters, months or regions).

Dataset columns: {_names([c.name for c in columns])}

Sample data:
{_dump(safe_rows(sample))}

If it is a crosstab, give an unpivotPlan with indexColumns (identify a row), valueColumns (to melt),
variableColumnName (for the melted headers) and valueColumnName (for the cells).
Example: columns ['Product', 'Q1_Sales', 'Q2_Sales'] -> crosstab,
unpivotPlan {{"indexColumns": ["Product"], "valueColumns": ["Q1_Sales", "Q2_Sales"], "variableColumnName": "Quarter", "valueColumnName": "Sales"}}.
Example: columns ['Date', 'Region', 'Sales'] -> tidy."""


def cleaning_plan_prompt(columns: Sequence[ColumnProfile], sample: Sequence[Row]) -> str:
    return f"""Identify rows that are not individual data entries: totals, subtotals, summaries, report footers.

Dataset columns: {_names([c.name for c in columns])}

Sample data:
{_dump(safe_rows(sample))}

Create simple rules {{"column": ..., "contains"|"equals"|"startsWith": ...}}. Matching is case-insensitive.
Prefer 'contains'. Example: a 'Region' cell "Grand Total" -> {{"column": "Region", "contains": "Total"}}.
Only create rules for rows with clear text indicators. If none, return {{"excludeRows": []}}."""


def data_preparation_prompt(columns: Sequence[ColumnProfile], sample: Sequence[Row],
                            last_error: Optional[str] = None) -> str:
    feedback = ""
    if last_error:
        feedback = f"""
Your previous attempt failed with this error:
{sanitize_for_prompt(last_error, 1000)}
Fix it in this attempt.
"""
    return f"""Columns as currently profiled:
{_column_list(columns)}

Sample rows:
{_dump(safe_rows(sample))}

Decide whether the data needs reshaping or cleaning before analysis (e.g. numbers stored with units,
mixed date formats, header rows repeated in the data, summary rows).
If it does, write the BODY of a Python function `def transform(data):` where `data` is a list of dicts.
The body MUST end with `return` of the new list of dicts. Available names: re, math, datetime, statistics,
parse_number(value) -> float or None.
If no change is needed, set jsFunctionBody to null.
Always list outputColumns with the type of each column after the transformation.
{feedback}"""


def filter_function_prompt(query: str, columns: Sequence[ColumnProfile], sample: Sequence[Row],
                           last_error: Optional[str] = None) -> str:
    feedback = f"\nYour previous attempt failed: {sanitize_for_prompt(last_error, 1000)}\n" if last_error else ""
    return f"""Columns:
{_column_list(columns)}

Sample rows:
{_dump(safe_rows(sample))}

User query: "{sanitize_for_prompt(query, 300)}"

Write the BODY of a Python function `def keep(row):` that returns True for rows matching the query.
`row` is a dict keyed by column name with string values; use parse_number(value) for numeric comparisons.
{feedback}"""


def summary_prompt(title: str, rows: Sequence[Row], language: str) -> str:
    more = f"(...and {len(rows) - MAX_SUMMARY_ROWS} more rows)" if len(rows) > MAX_SUMMARY_ROWS else ""
    return f"""The following data is for a chart titled "{sanitize_for_prompt(title, 120)}".
Data:
{_dump(safe_rows(rows[:MAX_SUMMARY_ROWS]))}
{more}

{_language_instruction(language)}
Highlight key trends, outliers or business implications. Interpret, don't just describe.
Respond with the summary text only."""


def core_summary_prompt(cards: Sequence[CardContext], columns: Sequence[ColumnProfile], language: str) -> str:
    payload = [{"title": c.title, "aggregatedDataSample": safe_rows(c.aggregated_data_sample)} for c in cards]
    return f"""Columns:
{_column_list(columns)}

Initial analyses:
{_dump(payload)}

Write a short briefing (3-5 sentences) describing what this dataset is about, its key dimensions and
metrics, and the most notable patterns. This briefing is your own working memory for later questions.
{_language_instruction(language)}"""


def proactive_insight_prompt(cards: Sequence[CardContext], language: str) -> str:
    payload = [{"id": c.id, "title": c.title, "aggregatedDataSample": safe_rows(c.aggregated_data_sample)}
               for c in cards]
    return f"""Analyses:
{_dump(payload)}

Find the single most surprising or actionable insight across these analyses and name the card it comes from.
{_language_instruction(language)}
Return {{"insight": "...", "cardId": "<one of the ids above>"}}."""


def final_summary_prompt(cards: Sequence[AnalysisCard], language: str) -> str:
    summaries = '\n\n'.join(
        f"Chart Title: {sanitize_for_prompt(c.plan.title, 120)}\nSummary: {c.summary.split('---')[0].strip()}"
        for c in cards
    )
    return f"""Here are individual analysis summaries:
{summaries}

Synthesize them into a single executive summary paragraph in {language}. Connect the dots, identify the
most critical insights, opportunities or risks. Do not repeat the individual summaries."""


def chat_prompt(
    columns: Sequence[ColumnProfile],
    history: Sequence[ChatMessage],
    message: str,
    cards: Sequence[CardContext],
    language: str,
    core_summary: Optional[str] = None,
    sample: Sequence[Row] = (),
    memories: Sequence[str] = (),
    preparation: Optional[DataPreparationPlan] = None,
    feedback: Optional[str] = None,
) -> str:
    history_text = '\n'.join(f"{m.sender}: {sanitize_for_prompt(m.text, 500)}" for m in history) or '(empty)'
    cards_payload: List[Dict[str, Any]] = [
        {"id": c.id, "title": c.title, "aggregatedDataSample": safe_rows(c.aggregated_data_sample)}
        for c in cards
    ]
    memory_text = '\n'.join(f"- {sanitize_for_prompt(m, 400)}" for m in memories) or '(none)'
    prep_text = sanitize_for_prompt(preparation.explanation, 400) if preparation else '(none)'
    feedback_text = f"\n{feedback}\n" if feedback else ""

    return f"""Respond in {language}.

Your briefing on this dataset: {sanitize_for_prompt(core_summary or '(none yet)', 1500)}
Data preparation already applied: {prep_text}

Columns:
{_column_list(columns)}

Sample rows:
{_dump(safe_rows(sample))}

Analysis cards currently on screen:
{_dump(cards_payload) if cards_payload else 'No cards yet.'}

Relevant memories:
{memory_text}

Conversation history:
{history_text}

The user's latest message: "{sanitize_for_prompt(message, 1000)}"

Respond with {{"actions": [...]}}. Every action MUST have a "thought". Action types:
1. text_response {{text, cardId?}}: conversation, answers, explanations.
2. plan_creation {{plan}}: a NEW chart (same rules as analysis plans).
3. dom_action {{domAction: {{toolName, args}}}} on an EXISTING card, cardId must be one of the ids above:
   - highlightCard {{cardId}}
   - changeCardChartType {{cardId, newType}}
   - showCardData {{cardId, visible}}
   - filterCard {{cardId, column, values: [...]}} (empty values clears the filter)
4. execute_js_code {{code: {{explanation, jsFunctionBody}}}}: permanently transform the dataset. jsFunctionBody is
   the BODY of a Python `def transform(data):` and MUST end with `return` of the new list of row dicts.
5. filter_spreadsheet {{args: {{query}}}}: filter the raw data explorer by a natural language query.
6. clarification_request {{clarification: {{question, pendingPlan, targetProperty, options: [{{label, value}}]}}}}:
   ask the user when a chart request is ambiguous. Use targetProperty "merge" with JSON-object option values
   to fill several plan fields at once.
Actions run in order. A dom_action can only target cards listed above, not cards created in the same response.
{feedback_text}"""
