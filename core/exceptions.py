"""
自定义异常类
用于在存储层、仓库层与标记引擎之间传递具有明确语义的错误信息。
读取路径上的损坏文档不会抛出这些异常，而是降级为空集合；写入路径则直接抛给调用方。
"""


class BookDatabaseError(Exception):
    """书籍数据库相关错误的基类"""
    pass


class DatabaseNotInitializedError(BookDatabaseError):
    """在书籍数据库初始化之前尝试写入集合"""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"书籍数据库未初始化: {path}")


class EntityNotFoundError(BookDatabaseError):
    """按 ID 查找的实体（人物、故事单元、事件、标记）不存在"""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind}不存在: {entity_id}")


class ValidationError(BookDatabaseError):
    """输入数据不合法，例如结束位置早于开始位置"""
    pass


class FrontmatterParseError(BookDatabaseError):
    """Frontmatter 头部或 JSON 数据块格式错误"""
    pass


class StorageOperationError(BookDatabaseError):
    """存储适配器读写失败"""

    def __init__(self, operation: str, path: str, reason: str = ""):
        self.operation = operation
        self.path = path
        message = f"存储操作失败 [{operation}] {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StaleWriteError(BookDatabaseError):
    """写入前检测到集合文档已被其他写入者更新（修订号不一致）"""

    def __init__(self, path: str, expected: int, actual: int):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(f"文档已被修改，拒绝覆盖: {path} (期望修订号 {expected}, 实际 {actual})")


class ConfigurationError(Exception):
    """当应用配置不正确或缺失时发生错误"""
    pass
