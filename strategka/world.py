"""
模拟世界接口

每个需要录制回放的模拟都实现 World 接口。
回放核心只通过该接口访问模拟：输入类型、魔数、版本和版本检查，
以及把状态/输入转换为可被 msgpack 序列化的负载。
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar

# 回合号：从模拟开始计数的 64 位无符号整数
Turn = int

MAX_TURN = (1 << 64) - 1


class World(ABC):
    """
    模拟世界基类

    子类需要：
    1. 设置类属性 Input（外部输入的类型，通常是玩家输入）
    2. 实现 magic_bytes() 和 current_version()
    3. 实现 to_payload() / from_payload() 用于保存初始状态

    输入默认通过 to_dict() / Input.from_dict() 转换，
    可以重写 input_to_payload() / input_from_payload() 改变格式。

    负载为 None 时序列化结果为 0 字节（例如没有状态的世界）。

    示例:
        class CounterWorld(World):
            Input = CounterInput

            @classmethod
            def magic_bytes(cls) -> bytes:
                return b'CNTR'

            @classmethod
            def current_version(cls) -> int:
                return 1
    """

    Input: ClassVar[type] = object

    @classmethod
    @abstractmethod
    def magic_bytes(cls) -> bytes:
        """
        游戏专用魔数（4 字节）

        用于防止用错误的模拟代码打开存档或回放。
        """

    @classmethod
    @abstractmethod
    def current_version(cls) -> int:
        """当前世界实现的版本号，写入文件以便兼容旧格式"""

    @classmethod
    def guard_version(cls, version: int) -> bool:
        """
        检查解析器是否能处理给定版本

        Args:
            version: 文件中记录的游戏版本

        Returns:
            True 如果可以加载（默认仅接受当前版本）
        """
        return version == cls.current_version()

    @classmethod
    def default(cls) -> 'World':
        """初始状态块为空时使用的默认世界"""
        return cls()

    def to_payload(self) -> Any:
        return self.to_dict()

    @classmethod
    def from_payload(cls, data: Any) -> 'World':
        return cls.from_dict(data)

    @classmethod
    def input_to_payload(cls, value) -> Any:
        return value.to_dict()

    @classmethod
    def input_from_payload(cls, data: Any):
        return cls.Input.from_dict(data)

    def to_dict(self) -> dict:
        raise NotImplementedError(f"{type(self).__name__} must implement to_payload()")

    @classmethod
    def from_dict(cls, data: dict) -> 'World':
        raise NotImplementedError(f"{cls.__name__} must implement from_payload()")
