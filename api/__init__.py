"""
HTTP API (FastAPI) over the parser, the editor and the assistant.
"""
