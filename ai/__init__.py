"""
AI Planning Module

LLM-backed (OpenAI/Anthropic) and mock planners that produce the daily
TradePlan. Every call is metered by the CostGovernor; the strategy layer
decides what survives.
"""
