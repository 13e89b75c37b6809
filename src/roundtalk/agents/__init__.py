"""
Dialogue participants.

- descriptor.py: AgentDescriptor (endpoint + persona) and PersonaPreset
- registry.py: AgentRegistry, the ordered roster handed to the scheduler
"""
from .descriptor import DEFAULT_HOST, DEFAULT_PORT, AgentDescriptor, PersonaPreset
from .registry import AgentRegistry
