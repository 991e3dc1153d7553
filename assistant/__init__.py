"""
LLM assistant: tool catalogue and the tool-calling loop that turns a
chat message into a list of structured changes.
"""
