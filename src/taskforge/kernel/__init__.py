from taskforge.kernel.bootstrap import AgentStack, build_agent_stack, build_backends

__all__ = ["AgentStack", "build_agent_stack", "build_backends"]
