"""
streamchat - streaming conversations with LLM providers.

This package streams conversation turns to an LLM through LiteLLM, dispatches
incremental events and tool-use requests to caller handlers, and resolves
each exchange to a single final message.
"""

__version__ = "0.1.0"
