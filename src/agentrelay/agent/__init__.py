"""
Agent Package — the boundary between the coordinator and agent processes.

- AgentEvent variants and parse_agent_event(): what an agent turn emits
- AgentRuntime / AgentHandle: what the coordinator needs from an agent
- SubprocessAgentRuntime: one NDJSON-speaking process per session
"""

from agentrelay.agent.contracts import AbortReason, AgentEvent, parse_agent_event
from agentrelay.agent.runtime import AgentHandle, AgentRuntime, HandleConfig
from agentrelay.agent.subprocess_runtime import AgentProcessError, SubprocessAgentRuntime

__all__ = [
    "AbortReason",
    "AgentEvent",
    "parse_agent_event",
    "AgentHandle",
    "AgentRuntime",
    "HandleConfig",
    "AgentProcessError",
    "SubprocessAgentRuntime",
]
