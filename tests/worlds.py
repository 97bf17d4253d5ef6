"""
测试用的模拟世界
"""

from dataclasses import dataclass

from strategka.world import World


@dataclass
class CounterInput:
    """计数器输入：op 为 'add' 或 'sub'"""
    op: str
    value: int

    def to_dict(self) -> dict:
        return {'op': self.op, 'value': self.value}

    @classmethod
    def from_dict(cls, data: dict) -> 'CounterInput':
        return cls(op=data['op'], value=data['value'])


def Add(value: int) -> CounterInput:
    return CounterInput('add', value)


def Sub(value: int) -> CounterInput:
    return CounterInput('sub', value)


@dataclass
class CounterWorld(World):
    field1: int = 0

    Input = CounterInput

    @classmethod
    def magic_bytes(cls) -> bytes:
        return b'TWD2'

    @classmethod
    def current_version(cls) -> int:
        return 1

    def to_dict(self) -> dict:
        return {'field1': self.field1}

    @classmethod
    def from_dict(cls, data: dict) -> 'CounterWorld':
        return cls(field1=data['field1'])

    def apply(self, value: CounterInput):
        if value.op == 'add':
            self.field1 += value.value
        else:
            self.field1 -= value.value


class CounterWorldV2(CounterWorld):
    """第二版：仍能读取第一版的文件"""

    @classmethod
    def current_version(cls) -> int:
        return 2

    @classmethod
    def guard_version(cls, version: int) -> bool:
        return 1 <= version <= 2


@dataclass
class EmptyWorld(World):
    """没有状态的世界，初始状态序列化为 0 字节"""

    @classmethod
    def magic_bytes(cls) -> bytes:
        return b'TWD1'

    @classmethod
    def current_version(cls) -> int:
        return 1

    def to_payload(self):
        return None

    @classmethod
    def from_payload(cls, data) -> 'EmptyWorld':
        return cls()


@dataclass
class SilentWorld(World):
    """输入序列化为 0 字节的世界（这样的文件无法被加载）"""
    level: int = 1

    Input = CounterInput

    @classmethod
    def magic_bytes(cls) -> bytes:
        return b'SLNT'

    @classmethod
    def current_version(cls) -> int:
        return 1

    def to_dict(self) -> dict:
        return {'level': self.level}

    @classmethod
    def from_dict(cls, data: dict) -> 'SilentWorld':
        return cls(level=data['level'])

    @classmethod
    def input_to_payload(cls, value):
        return None
