"""领域层模型与协议。

包含：
- models: ChatMessage / ProviderSettings / ProviderResponse 等调用模型。
- documents: 持久化的 StorageDocument 及其分区结构。
- exceptions: 业务异常类型定义。
"""
