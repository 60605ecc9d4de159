"""
Aggregation engine.

Pure functions over row lists: plan execution (group-by with sum, count or
avg), Top-N folding and the card display view, unpivoting crosstab data and
rule-based row exclusion.
None of them mutate their inputs.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence
from csv_assistant.core.schemas import AnalysisCard, AnalysisPlan, CleaningRule, Row, UnpivotPlan
from csv_assistant.core.performance import track_performance
from csv_assistant.services.profiler import parse_number

logger = logging.getLogger(__name__)

OTHERS_LABEL = "Others"


def result_value_key(plan: AnalysisPlan) -> str:
    """Key holding the numeric result in aggregated rows."""
    return plan.value_column or 'count'


def _secondary_value_key(plan: AnalysisPlan) -> str:
    key = plan.secondary_value_column or 'count'
    if key == result_value_key(plan):
        key = f"{key} ({plan.secondary_aggregation})"
    return key


def _reduce(values: List[float], aggregation: str) -> float:
    if aggregation == 'sum':
        return sum(values)
    if aggregation == 'count':
        return len(values)
    if aggregation == 'avg':
        # An empty group averages to 0
        return sum(values) / len(values) if values else 0
    raise ValueError(f"Unsupported aggregation type: {aggregation}")


def _collect(rows: Sequence[Row], group_by: str, value_column: Optional[str],
             aggregation: str) -> Dict[str, List[float]]:
    groups: Dict[str, List[float]] = {}
    for row in rows:
        key = row.get(group_by)
        if key is None:
            continue
        bucket = groups.setdefault(str(key), [])
        if aggregation == 'count':
            bucket.append(1.0)
            continue
        number = parse_number(row.get(value_column)) if value_column else None
        if number is not None:
            bucket.append(number)
    return groups


def _execute_scatter(rows: Sequence[Row], plan: AnalysisPlan) -> List[Row]:
    x_key, y_key = plan.x_value_column, plan.y_value_column
    points = []
    for row in rows:
        x = parse_number(row.get(x_key))
        y = parse_number(row.get(y_key))
        if x is not None and y is not None:
            points.append({x_key: x, y_key: y})
    return points


@track_performance("execute_plan")
def execute_plan(rows: Sequence[Row], plan: AnalysisPlan) -> List[Row]:
    """
    Execute an analysis plan over the full dataset.

    Returns aggregated rows sorted by value, descending. Ties keep the order in
    which groups were first encountered. An empty result means the plan is not
    viable for this data.

    Raises:
        ValueError: unsupported aggregation
    """
    if plan.chart_type == 'scatter':
        return _execute_scatter(rows, plan)

    aggregation = plan.aggregation
    if aggregation not in ('sum', 'count', 'avg'):
        raise ValueError(f"Unsupported aggregation type: {aggregation}")

    group_by = plan.group_by_column
    value_key = result_value_key(plan)
    groups = _collect(rows, group_by, plan.value_column, aggregation)
    result = [{group_by: label, value_key: _reduce(values, aggregation)} for label, values in groups.items()]

    if plan.chart_type == 'combo' and plan.secondary_aggregation:
        secondary_key = _secondary_value_key(plan)
        secondary = _collect(rows, group_by, plan.secondary_value_column, plan.secondary_aggregation)
        for item in result:
            item[secondary_key] = _reduce(secondary.get(item[group_by], []), plan.secondary_aggregation)

    # sorted() is stable, so equal values keep encounter order
    return sorted(result, key=lambda item: item[value_key], reverse=True)


def apply_top_n_with_others(
    rows: Sequence[Row],
    n: int,
    value_key: Optional[str] = None,
    label_key: Optional[str] = None,
) -> List[Row]:
    """
    Keep the N-1 largest rows and fold the rest into one "Others" row.

    The input is returned unchanged (as a new list) when it already has at
    most N rows, so N=1 folds everything into "Others". Keys default to the
    first two keys of the first row.
    """
    rows = list(rows)
    if not n or n < 1 or len(rows) <= n:
        return rows

    keys = list(rows[0].keys())
    label_key = label_key or keys[0]
    value_key = value_key or (keys[1] if len(keys) > 1 else keys[0])

    ranked = sorted(rows, key=lambda r: parse_number(r.get(value_key)) or 0, reverse=True)
    head, tail = ranked[:n - 1], ranked[n - 1:]
    others_total = sum(parse_number(r.get(value_key)) or 0 for r in tail)
    return head + [{label_key: OTHERS_LABEL, value_key: others_total}]


def display_rows(card: AnalysisCard) -> List[Row]:
    """
    Rows a card renders: its filter and hidden labels applied, then Top-N
    folding, then the "Others" row dropped when the card hides it.
    """
    plan = card.plan
    rows = list(card.aggregated_data)
    if plan.chart_type == 'scatter' or not plan.group_by_column:
        return rows

    label_key = plan.group_by_column
    if card.filter:
        wanted = {str(v) for v in card.filter.values}
        rows = [r for r in rows if str(r.get(card.filter.column)) in wanted]
    if card.hidden_labels:
        rows = [r for r in rows if str(r.get(label_key)) not in card.hidden_labels]
    if card.top_n:
        rows = apply_top_n_with_others(rows, card.top_n, result_value_key(plan), label_key)
        if card.hide_others:
            rows = [r for r in rows if r.get(label_key) != OTHERS_LABEL]
    return rows


def unpivot(rows: Sequence[Row], plan: UnpivotPlan) -> List[Row]:
    """Melt crosstab columns into (variable, value) pairs, row-major."""
    melted = []
    for row in rows:
        base = {col: row.get(col) for col in plan.index_columns}
        for column in plan.value_columns:
            item = dict(base)
            item[plan.variable_column_name] = column
            item[plan.value_column_name] = row.get(column)
            melted.append(item)
    logger.debug(f"Unpivoted {len(rows)} rows into {len(melted)}")
    return melted


def _matches(value: Any, rule: CleaningRule) -> bool:
    if value is None:
        return False
    text = str(value).lower()
    if rule.equals is not None and text == rule.equals.lower():
        return True
    if rule.contains is not None and rule.contains.lower() in text:
        return True
    if rule.starts_with is not None and text.startswith(rule.starts_with.lower()):
        return True
    return False


def apply_cleaning_rules(rows: Sequence[Row], rules: Sequence[CleaningRule]) -> List[Row]:
    """Drop every row matched by any rule (case-insensitive)."""
    if not rules:
        return list(rows)
    kept = [row for row in rows if not any(_matches(row.get(rule.column), rule) for rule in rules)]
    dropped = len(rows) - len(kept)
    if dropped:
        logger.info(f"Cleaning rules removed {dropped} rows")
    return kept
