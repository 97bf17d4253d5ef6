"""
回放格式的底层解析函数

解析器是一个显式的游标（Cursor）：
- 游标指向不可变缓冲区中的位置，读取方法会推进位置
- 字节不足时抛出 IncompleteError（还需要更多字节）
- 字节存在但结构错误时抛出其他 ReplayError

游标分两种模式：
- 流式 (partial=True): 缓冲区可能还在增长，长度不足一律视为 IncompleteError
- 完整 (partial=False): 缓冲区已完整，长度前缀超出剩余字节视为 InvalidLengthError

长度前缀块内部的子游标总是完整模式，块内字节不足属于结构错误。
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Optional, TypeVar

import msgpack

from .encoder import U32, U64
from .errors import (
    DecoderError,
    IncompleteError,
    InvalidLengthError,
    ParsingError,
    ReplayError,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

# msgpack.unpackb 可能抛出的异常
PAYLOAD_ERRORS = (ValueError, TypeError, msgpack.UnpackException)


@dataclass
class Block(Generic[T]):
    """
    长度前缀块的解析结果

    属性:
        value: 块内容解析出的值，块为空时为 None
        present (bool): 块是否有内容（长度不为 0）
    """
    value: Optional[T] = None
    present: bool = False


class Cursor:
    """
    输入游标

    属性:
        view (memoryview): 被解析的缓冲区（不复制）
        pos (int): 当前读取位置
        end (int): 可读取范围的结束位置（不包含）
        partial (bool): 缓冲区是否可能还有后续字节
        nested (bool): 是否是长度前缀块内部的子游标
    """

    def __init__(self, data, partial: bool = False, start: int = 0,
                 end: Optional[int] = None, nested: bool = False):
        self.view = data if isinstance(data, memoryview) else memoryview(data)
        if self.view.format != 'B' or self.view.ndim != 1:
            self.view = self.view.cast('B')
        self.pos = start
        self.end = len(self.view) if end is None else end
        self.partial = partial
        self.nested = nested

    @property
    def consumed(self) -> int:
        """已经读取的字节数（相对缓冲区开头）"""
        return self.pos

    def remaining(self) -> int:
        return self.end - self.pos

    def rest(self) -> memoryview:
        """剩余输入的切片（不复制）"""
        return self.view[self.pos:self.end]

    def _short(self, n: int, kind: str):
        if self.nested:
            return ParsingError(self.rest(), kind)
        return IncompleteError(n - self.remaining())

    def take(self, n: int, kind: str = 'take') -> memoryview:
        """
        读取 n 字节

        Args:
            n: 字节数
            kind: 出错时报告的解析步骤名称

        Returns:
            原缓冲区的切片

        Raises:
            IncompleteError: 顶层游标字节不足
            ParsingError: 子游标字节不足
        """
        if self.remaining() < n:
            raise self._short(n, kind)
        chunk = self.view[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def be_u32(self) -> int:
        return U32.unpack(self.take(U32.size, 'be_u32'))[0]

    def be_u64(self) -> int:
        return U64.unpack(self.take(U64.size, 'be_u64'))[0]

    def restrict(self, n: int) -> 'Cursor':
        """
        截取接下来的 n 字节作为子游标，并把自身推进 n 字节

        调用者需先确认剩余字节足够。
        """
        sub = Cursor(self.view, partial=False, start=self.pos,
                     end=self.pos + n, nested=True)
        self.pos += n
        return sub

    def expect_end(self):
        """要求子游标的内容被完全消耗"""
        if self.remaining():
            raise ParsingError(self.rest(), 'eof')


@contextmanager
def context(label: str):
    """
    为经过的错误添加上下文标签

    IncompleteError 也会带上标签，便于定位截断发生的位置。

    示例:
        with context('core version'):
            version = cursor.be_u32()
    """
    try:
        yield
    except ReplayError as e:
        e.add_context(label)
        raise


def length_decoding(cursor: Cursor, parse: Callable[[Cursor], T]) -> Block:
    """
    解析长度前缀块

    读取 u64 长度 L，然后把解析限制在接下来的 L 字节上。
    L 为 0 时不调用 parse，返回 present=False 的结果并记录警告。
    否则 parse 必须恰好消耗这 L 字节。

    Args:
        cursor: 输入游标
        parse: 块内容解析函数，接收子游标

    Returns:
        Block 结果

    Raises:
        InvalidLengthError: 完整缓冲区中剩余字节少于 L
        IncompleteError: 流式缓冲区中剩余字节少于 L
    """
    with context('block length'):
        length = cursor.be_u64()
    available = cursor.remaining()
    if available < length:
        if cursor.partial and not cursor.nested:
            raise IncompleteError(length - available)
        raise InvalidLengthError(length, available)

    body = cursor.restrict(length)
    if length == 0:
        logger.warning("Block length is 0")
        return Block(None, False)

    with context('block body'):
        value = parse(body)
        body.expect_end()
    return Block(value, True)


def decode_vec(cursor: Cursor, item_parser: Callable[[Cursor], T]) -> List[T]:
    """
    解析同类序列：u64 元素个数 + 逐个元素

    第一个元素解析失败就立即抛出，不保留部分结果。
    """
    with context('vector length'):
        count = cursor.be_u64()
    items = []
    for _ in range(count):
        with context('vector item'):
            items.append(item_parser(cursor))
    return items


def parse_payload(cursor: Cursor, convert: Callable[[Any], T] = None) -> T:
    """
    从子游标的全部剩余字节解析 msgpack 负载

    Args:
        cursor: 子游标（长度前缀块内容）
        convert: 可选的转换函数，把原始负载转换为领域对象

    Returns:
        解析出的值

    Raises:
        DecoderError: msgpack 解析或转换失败
    """
    data = cursor.take(cursor.remaining(), 'payload')
    try:
        value = msgpack.unpackb(data, raw=False, strict_map_key=False)
    except PAYLOAD_ERRORS as e:
        raise DecoderError(e) from e

    if convert is None:
        return value
    # 转换函数由世界类型提供，任何异常都视为负载结构不符
    try:
        return convert(value)
    except Exception as e:
        raise DecoderError(e) from e
