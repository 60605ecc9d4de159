"""
JSON schemas for model responses.

Written in the OpenAPI subset Gemini accepts as ``response_schema``; the same
dicts are embedded in the Groq system prompt.
"""
from csv_assistant.core.schemas import AGGREGATIONS, CHART_TYPES, DOM_TOOLS

COLUMN_TYPES = ['numerical', 'categorical', 'date', 'time', 'currency', 'percentage']

PLAN_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "chartType": {"type": "STRING", "enum": list(CHART_TYPES), "description": "Type of chart to generate."},
        "title": {"type": "STRING", "description": "A concise title for the analysis."},
        "description": {"type": "STRING", "description": "A brief explanation of what the analysis shows."},
        "aggregation": {"type": "STRING", "enum": list(AGGREGATIONS),
                        "description": "Aggregation to apply. Omit for scatter plots."},
        "groupByColumn": {"type": "STRING",
                          "description": "Categorical column to group by. Omit for scatter plots."},
        "valueColumn": {"type": "STRING",
                        "description": "Numerical column to aggregate. Not needed for 'count'."},
        "xValueColumn": {"type": "STRING", "description": "Scatter plots only: numerical X-axis column."},
        "yValueColumn": {"type": "STRING", "description": "Scatter plots only: numerical Y-axis column."},
        "secondaryValueColumn": {"type": "STRING", "description": "Combo charts only: second numerical column."},
        "secondaryAggregation": {"type": "STRING", "enum": list(AGGREGATIONS),
                                 "description": "Combo charts only: aggregation for the second column."},
        "defaultTopN": {"type": "INTEGER", "description": "Show only the top N categories by default."},
        "defaultHideOthers": {"type": "BOOLEAN", "description": "Hide the folded 'Others' bucket by default."},
    },
    "required": ["chartType", "title", "description"],
}

# Clarifications carry a plan that is still missing fields
PARTIAL_PLAN_SCHEMA = {key: value for key, value in PLAN_SCHEMA.items() if key != "required"}

PLANS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "plans": {"type": "ARRAY", "items": PLAN_SCHEMA},
    },
    "required": ["plans"],
}

COLUMN_PROFILE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "name": {"type": "STRING"},
        "type": {"type": "STRING", "enum": COLUMN_TYPES},
    },
    "required": ["name", "type"],
}

DATA_PREPARATION_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "explanation": {"type": "STRING", "description": "What the transformation does and why."},
        "jsFunctionBody": {
            "type": "STRING",
            "nullable": True,
            "description": "Body of a Python function `transform(data)` that returns the cleaned list of row "
                           "dicts, or null when no transformation is needed.",
        },
        "outputColumns": {"type": "ARRAY", "items": COLUMN_PROFILE_SCHEMA},
    },
    "required": ["explanation", "outputColumns"],
}

DATA_STRUCTURE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "format": {"type": "STRING", "enum": ["tidy", "crosstab"], "description": "The detected format of the data."},
        "unpivotPlan": {
            "type": "OBJECT",
            "description": "Required if format is 'crosstab'. Defines how to unpivot the data.",
            "properties": {
                "indexColumns": {"type": "ARRAY", "items": {"type": "STRING"}},
                "valueColumns": {"type": "ARRAY", "items": {"type": "STRING"}},
                "variableColumnName": {"type": "STRING"},
                "valueColumnName": {"type": "STRING"},
            },
            "required": ["indexColumns", "valueColumns", "variableColumnName", "valueColumnName"],
        },
    },
    "required": ["format"],
}

CLEANING_PLAN_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "excludeRows": {
            "type": "ARRAY",
            "description": "Rules identifying rows to exclude from analysis.",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "column": {"type": "STRING"},
                    "contains": {"type": "STRING"},
                    "equals": {"type": "STRING"},
                    "startsWith": {"type": "STRING"},
                },
                "required": ["column"],
            },
        },
    },
    "required": ["excludeRows"],
}

FILTER_FUNCTION_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "explanation": {"type": "STRING", "description": "A short description of the filter."},
        "jsFunctionBody": {
            "type": "STRING",
            "description": "Body of a Python function `keep(row)` returning True for rows to keep.",
        },
    },
    "required": ["explanation", "jsFunctionBody"],
}

PROACTIVE_INSIGHT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "insight": {"type": "STRING"},
        "cardId": {"type": "STRING"},
    },
    "required": ["insight", "cardId"],
}

CHAT_ACTIONS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "actions": {
            "type": "ARRAY",
            "description": "A sequence of actions for the assistant to perform, in order.",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "responseType": {
                        "type": "STRING",
                        "enum": ["text_response", "plan_creation", "dom_action", "execute_js_code",
                                 "filter_spreadsheet", "clarification_request"],
                    },
                    "thought": {"type": "STRING", "description": "Why this action is taken. Always required."},
                    "text": {"type": "STRING", "description": "Required for 'text_response'."},
                    "cardId": {"type": "STRING", "description": "Optional card the text refers to."},
                    "plan": PLAN_SCHEMA,
                    "domAction": {
                        "type": "OBJECT",
                        "properties": {
                            "toolName": {"type": "STRING", "enum": list(DOM_TOOLS)},
                            "args": {
                                "type": "OBJECT",
                                "properties": {
                                    "cardId": {"type": "STRING"},
                                    "newType": {"type": "STRING", "enum": list(CHART_TYPES)},
                                    "visible": {"type": "BOOLEAN"},
                                    "column": {"type": "STRING"},
                                    "values": {"type": "ARRAY", "items": {"type": "STRING"}},
                                },
                                "required": ["cardId"],
                            },
                        },
                        "required": ["toolName", "args"],
                    },
                    "code": {
                        "type": "OBJECT",
                        "properties": {
                            "explanation": {"type": "STRING"},
                            "jsFunctionBody": {"type": "STRING"},
                        },
                        "required": ["explanation", "jsFunctionBody"],
                    },
                    "args": {
                        "type": "OBJECT",
                        "properties": {"query": {"type": "STRING"}},
                        "required": ["query"],
                    },
                    "clarification": {
                        "type": "OBJECT",
                        "properties": {
                            "question": {"type": "STRING"},
                            "pendingPlan": PARTIAL_PLAN_SCHEMA,
                            "targetProperty": {"type": "STRING"},
                            "options": {
                                "type": "ARRAY",
                                "items": {
                                    "type": "OBJECT",
                                    "properties": {
                                        "label": {"type": "STRING"},
                                        "value": {"type": "STRING"},
                                    },
                                    "required": ["label", "value"],
                                },
                            },
                        },
                        "required": ["question", "pendingPlan", "targetProperty", "options"],
                    },
                },
                "required": ["responseType", "thought"],
            },
        },
    },
    "required": ["actions"],
}
