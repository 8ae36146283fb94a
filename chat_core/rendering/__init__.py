from chat_core.rendering.typing_renderer import RenderSink, TypingRenderer, TypingSession, step_size

__all__ = ["RenderSink", "TypingRenderer", "TypingSession", "step_size"]
