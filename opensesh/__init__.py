"""OpenSesh - skill and execution orchestration for an AI coding assistant."""
