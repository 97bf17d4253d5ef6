"""
回放格式错误定义

本模块定义编码器和解码器共用的错误集合：
- ReplayError: 所有回放错误的基类，携带上下文路径
- IncompleteError: 输入字节不足，需要更多数据才能判断成功或失败
- 其余子类: 结构性错误（魔数、版本、长度、负载等）

解析错误可能引用被解析缓冲区的切片（memoryview，零拷贝）。
在缓冲区会被扩展或释放的场景（例如流式加载）中，
必须先调用 detach() 得到只持有自身字节的错误。
"""

from typing import Optional, Tuple

# 回放容器的魔数（ASCII "STGR"）
MAGIC_BYTES = b'STGR'


class ReplayError(Exception):
    """
    回放错误基类

    属性:
        path (Tuple[str, ...]):
            上下文路径，从最外层字段到最内层字段。
            例如：('inputs', 'vector item', 'turn inputs')
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.path: Tuple[str, ...] = ()

    def add_context(self, label: str) -> 'ReplayError':
        """
        在上下文路径最外层添加标签

        Args:
            label: 字段标签

        Returns:
            自身（便于链式调用）
        """
        self.path = (label,) + self.path
        return self

    def boxed(self) -> 'ReplayError':
        """
        转换为嵌套形式: ContextError(label, ContextError(..., 原始错误))

        Returns:
            路径为空时返回自身，否则返回最外层的 ContextError
        """
        inner = self._copy_with_path(())
        for label in reversed(self.path):
            inner = ContextError(label, inner)
        return inner

    @property
    def root_cause(self) -> 'ReplayError':
        """最内层错误"""
        return self

    def detach(self) -> 'ReplayError':
        """
        转换为不引用外部缓冲区的错误

        默认错误只持有自身数据，返回自身即可。
        """
        return self

    def _copy_with_path(self, path: Tuple[str, ...]) -> 'ReplayError':
        clone = self.__class__.__new__(self.__class__)
        clone.__dict__.update(self.__dict__)
        clone.args = self.args
        clone.path = path
        return clone

    def __str__(self) -> str:
        if not self.path:
            return self.message
        return f"{' > '.join(self.path)}: {self.message}"


class IncoherentTurnError(ReplayError):
    """录制的回合号不是严格递增"""

    def __init__(self, last: int, attempted: int):
        super().__init__(
            f"Cannot record non monotonic turn. Last turn {last}, "
            f"tried to add new turn {attempted}"
        )
        self.last = last
        self.attempted = attempted


class ReplayIOError(ReplayError):
    """读写文件或输出流失败"""

    def __init__(self, cause: OSError):
        super().__init__(f"The encoder or decoder failed due to IO error: {cause}")
        self.cause = cause


class InvalidMagicError(ReplayError):
    """头部魔数不匹配（核心魔数或游戏魔数）"""

    def __init__(self, found: bytes, expected: bytes = MAGIC_BYTES):
        super().__init__(
            f"Invalid magic bytes in header: {bytes(found)!r}, expected {bytes(expected)!r}"
        )
        self.found = bytes(found)
        self.expected = bytes(expected)


class UnsupportedCoreVersionError(ReplayError):
    def __init__(self, version: int):
        super().__init__(f"Unsupported core version of replay format: {version}")
        self.version = version


class UnsupportedGameVersionError(ReplayError):
    def __init__(self, version: int):
        super().__init__(f"Unsupported game version of replay format: {version}")
        self.version = version


class MissingTurnInputError(ReplayError):
    """回合输入块长度为 0"""

    def __init__(self):
        super().__init__("There is input with length 0 in replay turn")


class ParsingError(ReplayError):
    """
    底层解析错误

    属性:
        input: 出错位置剩余的输入，可能是原缓冲区的 memoryview 切片
        kind (str): 失败的解析步骤名称，例如 'eof'
    """

    def __init__(self, input, kind: str):
        super().__init__(f"Parsing error {kind} for input of {len(input)} bytes")
        self.input = input
        self.kind = kind

    def detach(self) -> 'ParsingError':
        if isinstance(self.input, bytes):
            return self
        owned = ParsingError(bytes(self.input), self.kind)
        owned.path = self.path
        return owned


class InvalidLengthError(ReplayError):
    """长度前缀声明的长度超过剩余字节数"""

    def __init__(self, declared: int, available: int):
        super().__init__(
            f"Length prefixed block has invalid length. Found {declared}, "
            f"the input has only {available} bytes"
        )
        self.declared = declared
        self.available = available


class EncoderError(ReplayError):
    """结构化序列化失败"""

    def __init__(self, cause: Exception):
        super().__init__(f"Failed to encode payload: {cause}")
        self.cause = cause


class DecoderError(ReplayError):
    """结构化反序列化失败"""

    def __init__(self, cause: Exception):
        super().__init__(f"Failed to decode payload: {cause}")
        self.cause = cause


class ContextError(ReplayError):
    """
    带标签的嵌套错误

    由 ReplayError.boxed() 生成，inner 为下一层错误。
    """

    def __init__(self, label: str, inner: ReplayError):
        super().__init__(f"Context {label}. {inner}")
        self.label = label
        self.inner = inner

    @property
    def root_cause(self) -> ReplayError:
        return self.inner.root_cause

    def detach(self) -> 'ContextError':
        inner = self.inner.detach()
        if inner is self.inner:
            return self
        owned = ContextError(self.label, inner)
        owned.path = self.path
        return owned


class IncompleteError(ReplayError):
    """
    输入不完整

    属性:
        needed (Optional[int]): 至少还需要的字节数，未知时为 None
    """

    def __init__(self, needed: Optional[int] = None):
        super().__init__(
            f"Parsing failed as incomplete input provided. Needed {needed} bytes"
            if needed is not None else
            "Parsing failed as incomplete input provided. Needed unknown amount of bytes"
        )
        self.needed = needed
