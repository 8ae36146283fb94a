from chat_core.orchestration.fallback import FallbackOrchestrator, OrchestratorState

__all__ = ["FallbackOrchestrator", "OrchestratorState"]
