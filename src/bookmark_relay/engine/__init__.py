from bookmark_relay.engine.base import ResumeResult, WorkflowEngine
from bookmark_relay.engine.memory import InMemoryWorkflowEngine, ResumedActivity

__all__ = ["InMemoryWorkflowEngine", "ResumeResult", "ResumedActivity", "WorkflowEngine"]
