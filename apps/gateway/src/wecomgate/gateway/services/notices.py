"""用户可见文案

平台没有独立的错误通道，所有失败都以流内容的形式呈现给用户。
"""

WELCOME_MESSAGE = (
    "你好！👋 我是 AI 助手。\n\n"
    "你可以使用下面的指令管理会话：\n"
    "• **/new** - 新建会话（清空上下文）\n"
    "• **/compact** - 压缩会话（保留上下文摘要）\n"
    "• **/help** - 查看更多命令\n\n"
    "有什么我可以帮你的吗？"
)

STREAM_EXPIRED_MESSAGE = "会话已过期"

PROCESSING_FAILED_MESSAGE = "⚠️ 消息处理失败，请稍后重试。"

PROCESSING_TIMEOUT_MESSAGE = (
    "⚠️ 处理超时，请稍后重试。如果问题持续，请尝试简化您的问题或使用 /new 开始新会话。"
)

# 本地图片在正文中的占位
IMAGE_PLACEHOLDER = "[图片]"
