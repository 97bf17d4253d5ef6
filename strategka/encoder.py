"""
回放格式的底层编码函数

- 定长大端整数 (u32 / u64)
- 长度前缀块：先缓冲块内容，写入 u64 长度，再写入内容
- 同类序列：u64 元素个数 + 逐个元素
- msgpack 负载：允许 0 字节结果，但会记录警告
"""

import io
import logging
import struct
from typing import Any, Callable, Sequence, TypeVar

import msgpack

from .errors import EncoderError, ReplayIOError

logger = logging.getLogger(__name__)

T = TypeVar('T')

U32 = struct.Struct('!I')
U64 = struct.Struct('!Q')


def write_all(sink, data: bytes):
    """
    写入全部字节到输出流

    Args:
        sink: 任何带 write() 方法的对象（文件、BytesIO、bytearray 包装等）
        data: 要写入的字节

    Raises:
        ReplayIOError: 输出流写入失败
    """
    try:
        sink.write(data)
    except OSError as e:
        raise ReplayIOError(e) from e


def encode_be_u32(value: int, sink):
    """写入 4 字节大端无符号整数"""
    try:
        packed = U32.pack(value)
    except struct.error as e:
        raise EncoderError(e) from e
    write_all(sink, packed)


def encode_be_u64(value: int, sink):
    """写入 8 字节大端无符号整数"""
    try:
        packed = U64.pack(value)
    except struct.error as e:
        raise EncoderError(e) from e
    write_all(sink, packed)


def length_encoded(sink, body: Callable[[io.BytesIO], None]):
    """
    写入长度前缀块

    先把 body 写入临时缓冲区以得到长度，
    然后写入 u64 长度前缀（即使长度为 0 也会写入），
    最后在内容非空时写入内容。

    Args:
        sink: 输出流
        body: 接收临时缓冲区并写入块内容的函数
    """
    buff = io.BytesIO()
    body(buff)
    data = buff.getvalue()
    encode_be_u64(len(data), sink)
    if data:
        write_all(sink, data)


def encode_vec(values: Sequence[T], sink, item_encoder: Callable[[Any, T], None]):
    """
    写入同类序列

    Args:
        values: 元素序列
        sink: 输出流
        item_encoder: 单个元素的编码函数 (sink, value)，元素之间没有额外分隔
    """
    encode_be_u64(len(values), sink)
    for value in values:
        item_encoder(sink, value)


def pack_payload(value: Any) -> bytes:
    """
    用 msgpack 序列化负载

    None 表示"没有内容"，序列化结果为空字节串。

    Raises:
        EncoderError: 值无法被 msgpack 序列化
    """
    if value is None:
        return b''
    try:
        return msgpack.packb(value, use_bin_type=True)
    except (TypeError, ValueError, OverflowError) as e:
        raise EncoderError(e) from e


def encode_payload(value: Any, sink, name: str = 'value'):
    """
    序列化负载并写入输出流

    序列化结果为 0 字节时视为成功，只记录警告；
    外层长度前缀随后会读回 0。

    Args:
        value: 可被 msgpack 序列化的负载
        sink: 输出流
        name: 日志中显示的负载名称
    """
    data = pack_payload(value)
    if not data:
        logger.warning(f"Serialization body of {name} is empty!")
        return
    write_all(sink, data)
