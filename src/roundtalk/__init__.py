"""
roundtalk -- round-robin conversations between local LLM agents.

Several Ollama-compatible models take turns on a shared transcript. Agents
can think out loud (<think>), ask the human a question (<clarifyWithUser>)
and vote to stop (<conversationEnd/>).
"""

__version__ = "0.1.0"
