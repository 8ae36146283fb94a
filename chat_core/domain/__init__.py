"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ProviderAttempt 模型。
- conversation: 会话与消息的存储模型及 ConversationStore 抽象。
- exceptions: 业务异常类型定义。
"""
