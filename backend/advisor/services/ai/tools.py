"""
Action tools offered to models on the reasoning path.

Definitions are provider-neutral ({name, description, parameters}); each
client converts them to its own wire format. Tool execution belongs to the
caller: the advice service only returns the coerced tool calls.
"""
from typing import Any, Dict, List

ADVISOR_TOOLS: List[Dict[str, Any]] = [
    {
        "name": "create_financial_goal",
        "description": (
            "Create a financial goal when the user states a target amount, e.g. "
            "'I want to save $10000 by December'. Set user_confirmed to true for "
            "imperative requests."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "user_confirmed": {"type": "boolean"},
                "name": {"type": "string", "description": "Short goal name"},
                "target_amount": {
                    "type": "string",
                    "description": "Target amount as a number string without currency symbols",
                },
                "target_date": {"type": "string", "description": "YYYY-MM-DD"},
                "description": {"type": "string"},
            },
            "required": ["name", "target_amount", "target_date"],
        },
    },
    {
        "name": "add_transaction",
        "description": (
            "Record a transaction when the user says they spent or received a "
            "specific amount."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["income", "expense"]},
                "amount": {"type": "string", "description": "Amount, e.g. '45.50'"},
                "category": {"type": "string"},
                "description": {"type": "string"},
                "date": {"type": "string", "description": "YYYY-MM-DD, defaults to today"},
            },
            "required": ["type", "amount", "category"],
        },
    },
    {
        "name": "calculate_debt_payoff",
        "description": "Compute a payoff timeline for the user's debts with an extra monthly payment.",
        "parameters": {
            "type": "object",
            "properties": {
                "strategy": {"type": "string", "enum": ["snowball", "avalanche"]},
                "extra_monthly_payment": {"type": "string"},
            },
            "required": ["strategy"],
        },
    },
    {
        "name": "project_future_value",
        "description": "Project the future value of savings with compound growth.",
        "parameters": {
            "type": "object",
            "properties": {
                "principal": {"type": "string"},
                "monthly_contribution": {"type": "string"},
                "annual_return_percent": {"type": "string"},
                "years": {"type": "string"},
                "adjust_for_inflation": {"type": "boolean"},
            },
            "required": ["principal", "annual_return_percent", "years"],
        },
    },
    {
        "name": "calculate_emergency_fund",
        "description": "Recommend an emergency fund size from monthly expenses and job stability.",
        "parameters": {
            "type": "object",
            "properties": {
                "monthly_expenses": {"type": "string"},
                "months_of_coverage": {"type": "string"},
                "stable_income": {"type": "boolean"},
            },
            "required": ["monthly_expenses"],
        },
    },
]


def get_tool_names() -> List[str]:
    return [tool["name"] for tool in ADVISOR_TOOLS]
