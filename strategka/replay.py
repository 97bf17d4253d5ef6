"""
Replay recording, serialization and playback

容器格式（所有整数为大端）：
    MAGIC (4) | core_version u32 | game_magic (4) | game_version u32 | rate u32
    | initial: u64 长度 + msgpack
    | turns: u64 个数 + N × (turn u64 | inputs: u64 个数 + M × (u64 长度 + msgpack))
"""

import copy
import io
import logging
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Type, Union

from .config import get_config
from .decoder import Cursor, context, decode_vec, length_decoding, parse_payload
from .encoder import (
    encode_be_u32,
    encode_be_u64,
    encode_payload,
    encode_vec,
    length_encoded,
    write_all,
)
from .errors import (
    MAGIC_BYTES,
    EncoderError,
    IncoherentTurnError,
    IncompleteError,
    InvalidMagicError,
    MissingTurnInputError,
    ReplayError,
    ReplayIOError,
    UnsupportedCoreVersionError,
    UnsupportedGameVersionError,
)
from .world import MAX_TURN, Turn, World

logger = logging.getLogger(__name__)

# 当前代码支持的回放格式版本
REPLAY_FORMAT_VERSION = 1

# rate 以 u32 保存
MAX_RATE = 2**32 - 1

PathLike = Union[str, Path]


class Replay:
    """
    回放数据

    保存模拟的初始状态和所有外部输入，
    可以从头重放到最后一个状态。
    假设模拟以固定的每秒回合数运行。

    属性:
        world_cls (Type[World]):
            回放对应的世界类型，决定魔数、版本和输入格式。

        rate (int):
            每秒模拟回合数（仅作为元数据保存）。

        initial (World):
            回合 0 时的模拟状态，构造后不再修改。

        inputs (List[Tuple[int, list]]):
            所有录制的输入，按回合号严格递增排列。
            例如：[(0, []), (1, [Add(4)]), (2, [Sub(2), Add(8)])]
    """

    def __init__(self, initial: World, rate: int = None,
                 world_cls: Optional[Type[World]] = None):
        """
        创建空回放

        Args:
            initial: 初始世界状态（会被深拷贝）
            rate: 每秒回合数，默认读取配置
            world_cls: 世界类型，默认为 type(initial)

        Raises:
            ValueError: rate 超出 u32 范围
        """
        if rate is None:
            rate = get_config().recording.default_rate
        if not 0 <= rate <= MAX_RATE:
            raise ValueError(f"Rate {rate} does not fit into u32")
        self.world_cls: Type[World] = world_cls or type(initial)
        self.rate = rate
        self.initial = copy.deepcopy(initial)
        self.inputs: List[Tuple[Turn, list]] = []

    @classmethod
    def new(cls, initial: World, rate: int = None) -> 'Replay':
        return cls(initial, rate)

    @property
    def last_turn(self) -> Optional[Turn]:
        if not self.inputs:
            return None
        return self.inputs[-1][0]

    def record(self, turn: Turn, inputs: Sequence):
        """
        记录一个回合的外部输入

        Args:
            turn: 回合号，必须大于上一次记录的回合号
            inputs: 该回合的输入（可以为空）

        Raises:
            IncoherentTurnError: 回合号没有严格递增，已有记录保持不变
            ValueError: 回合号超出 u64 范围
        """
        if not 0 <= turn <= MAX_TURN:
            raise ValueError(f"Turn {turn} does not fit into u64")
        last = self.last_turn
        if last is not None and last >= turn:
            raise IncoherentTurnError(last, turn)
        self.inputs.append((turn, copy.deepcopy(list(inputs))))

    # ==================== 编码 ====================

    def encode(self, sink):
        """
        把回放的字节写入输出流

        Args:
            sink: 任何带 write() 方法的对象
        """
        world_cls = self.world_cls
        magic = bytes(world_cls.magic_bytes())
        if len(magic) != len(MAGIC_BYTES):
            raise EncoderError(ValueError(
                f"{world_cls.__name__}.magic_bytes() must return 4 bytes, got {magic!r}"
            ))

        write_all(sink, MAGIC_BYTES)
        encode_be_u32(REPLAY_FORMAT_VERSION, sink)
        write_all(sink, magic)
        encode_be_u32(world_cls.current_version(), sink)
        encode_be_u32(self.rate, sink)
        length_encoded(sink, lambda buff: encode_payload(
            self.initial.to_payload(), buff, world_cls.__name__
        ))
        encode_vec(self.inputs, sink, self._encode_turn)

    def _encode_turn(self, sink, entry: Tuple[Turn, list]):
        turn, inputs = entry
        encode_be_u64(turn, sink)
        encode_vec(inputs, sink, self._encode_input)

    def _encode_input(self, sink, value):
        payload = self.world_cls.input_to_payload(value)
        length_encoded(sink, lambda buff: encode_payload(
            payload, buff, type(value).__name__
        ))

    def to_bytes(self) -> bytes:
        """编码为字节串"""
        buff = io.BytesIO()
        self.encode(buff)
        return buff.getvalue()

    def save(self, path: PathLike):
        """
        把回放写入新建的文件

        先在内存中完成编码，编码失败时不会打开文件，已有文件保持不变。

        Args:
            path: 文件路径（已存在则覆盖）
        """
        data = self.to_bytes()
        try:
            with open(path, 'wb') as f:
                write_all(f, data)
        except OSError as e:
            raise ReplayIOError(e) from e
        logger.debug(f"Saved replay with {len(self.inputs)} turns to {path}")

    # ==================== 解码 ====================

    @classmethod
    def decode(cls, world_cls: Type[World], data) -> 'Replay':
        """
        从完整的字节缓冲区解码回放

        Args:
            world_cls: 期望的世界类型
            data: bytes / bytearray / memoryview

        Returns:
            新的 Replay 实例
        """
        return decode_replay(world_cls, data).replay

    @classmethod
    def load(cls, world_cls: Type[World], path: PathLike,
             chunk_size: Optional[int] = None) -> 'Replay':
        """
        从文件加载回放

        按块读取文件，每读一块就尝试解码已读取的全部字节。
        见 load_stream()。

        Raises:
            ReplayIOError: 无法打开或读取文件
            IncompleteError: 文件被截断
            ReplayError: 其他格式错误
        """
        try:
            f = open(path, 'rb')
        except OSError as e:
            raise ReplayIOError(e) from e
        with f:
            try:
                return load_stream(world_cls, f, chunk_size)
            except IncompleteError:
                logger.error(f"Cannot parse replay from {path}, file is truncated")
                raise

    def __eq__(self, other) -> bool:
        if not isinstance(other, Replay):
            return NotImplemented
        return (
            self.world_cls is other.world_cls
            and self.rate == other.rate
            and self.initial == other.initial
            and self.inputs == other.inputs
        )

    def __repr__(self) -> str:
        return (
            f"Replay(world={self.world_cls.__name__}, rate={self.rate}, "
            f"initial={self.initial!r}, inputs={self.inputs!r})"
        )


@dataclass
class DecodeResult:
    """
    解码结果

    属性:
        replay (Replay): 解码出的回放
        initial_defaulted (bool): 初始状态块为空，initial 使用了 World.default()
        consumed (int): 回放占用的字节数，之后的字节被忽略
    """
    replay: Replay
    initial_defaulted: bool
    consumed: int


def decode_replay(world_cls: Type[World], data, partial_input: bool = False) -> DecodeResult:
    """
    解码回放容器

    Args:
        world_cls: 期望的世界类型
        data: 字节缓冲区
        partial_input: 缓冲区是否可能还有后续字节（流式读取时为 True）

    Returns:
        DecodeResult

    Raises:
        IncompleteError: 需要更多字节
        ReplayError: 结构错误
    """
    cursor = Cursor(data, partial=partial_input)
    with context('core magic bytes'):
        _parse_magic(cursor)
    with context('core version'):
        _parse_core_version(cursor)
    with context('game magic bytes'):
        _parse_game_magic(cursor, world_cls)
    with context('game version'):
        _parse_game_version(cursor, world_cls)
    with context('simulation rate'):
        rate = cursor.be_u32()
    with context('initial world'):
        block = length_decoding(
            cursor, partial(parse_payload, convert=world_cls.from_payload)
        )
    with context('inputs'):
        inputs = decode_vec(cursor, partial(_parse_turn, world_cls=world_cls))

    if block.present:
        initial = block.value
    else:
        logger.warning(f"Initial world block is empty, using default {world_cls.__name__}")
        initial = world_cls.default()

    replay = Replay(initial, rate, world_cls)
    replay.inputs = inputs
    return DecodeResult(replay, not block.present, cursor.consumed)


def load_stream(world_cls: Type[World], source, chunk_size: Optional[int] = None) -> Replay:
    """
    从长度未知的字节流增量加载回放

    每次读取一块追加到缓冲区，然后尝试解码整个缓冲区：
    - 成功: 立即返回，流中剩余字节被忽略
    - IncompleteError: 记住缺少的字节数，继续读取
    - 其他错误: 立即抛出（已 detach，不引用缓冲区）
    - 读到 0 字节且之前不完整: 抛出记住的 IncompleteError

    每读一块都从头解析一次，总代价为 O(n²)，
    对非常大的回放文件应增大 chunk_size。

    Args:
        world_cls: 期望的世界类型
        source: 带 read(n) 方法的对象
        chunk_size: 每次读取的字节数，默认读取配置
    """
    if chunk_size is None:
        chunk_size = get_config().io.chunk_size
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    buff = bytearray()
    last_incomplete: Optional[IncompleteError] = None
    while True:
        try:
            chunk = source.read(chunk_size)
        except OSError as e:
            raise ReplayIOError(e) from e

        if not chunk and last_incomplete is not None:
            raise last_incomplete

        buff.extend(chunk)
        try:
            result = decode_replay(world_cls, bytes(buff), partial_input=True)
        except IncompleteError as e:
            logger.debug(f"Replay incomplete after {len(buff)} bytes: {e}")
            last_incomplete = e
            continue
        except ReplayError as e:
            raise e.detach() from None
        return result.replay


def _parse_magic(cursor: Cursor):
    magic = cursor.take(len(MAGIC_BYTES), 'magic')
    if magic != MAGIC_BYTES:
        raise InvalidMagicError(magic)


def _parse_core_version(cursor: Cursor) -> int:
    version = cursor.be_u32()
    if version != REPLAY_FORMAT_VERSION:
        raise UnsupportedCoreVersionError(version)
    return version


def _parse_game_magic(cursor: Cursor, world_cls: Type[World]):
    expected = bytes(world_cls.magic_bytes())
    magic = cursor.take(len(MAGIC_BYTES), 'magic')
    if magic != expected:
        raise InvalidMagicError(magic, expected)


def _parse_game_version(cursor: Cursor, world_cls: Type[World]) -> int:
    version = cursor.be_u32()
    if not world_cls.guard_version(version):
        raise UnsupportedGameVersionError(version)
    return version


def _parse_turn(cursor: Cursor, world_cls: Type[World]) -> Tuple[Turn, list]:
    with context('turn number'):
        turn = cursor.be_u64()
    with context('turn inputs'):
        inputs = decode_vec(cursor, partial(_parse_input, world_cls=world_cls))
    return turn, inputs


def _parse_input(cursor: Cursor, world_cls: Type[World]):
    with context('turn input'):
        block = length_decoding(
            cursor, partial(parse_payload, convert=world_cls.input_from_payload)
        )
    if not block.present:
        raise MissingTurnInputError()
    return block.value


# ==================== 回放播放 ====================

class ReplayPlayer:
    """
    回放播放器

    按回合顺序逐条取出录制的输入，
    或把输入重新应用到初始状态的副本上。
    """

    def __init__(self, replay: Replay):
        """
        初始化播放器

        Args:
            replay: 回放实例
        """
        self.replay = replay
        self.current_index = 0
        self.is_playing = False
        self.on_turn_callback: Optional[Callable] = None
        self.on_complete_callback: Optional[Callable] = None

    @classmethod
    def from_file(cls, world_cls: Type[World], path: PathLike) -> 'ReplayPlayer':
        """从文件创建播放器"""
        return cls(Replay.load(world_cls, path))

    def play(self):
        """从头开始播放"""
        self.current_index = 0
        self.is_playing = True

    def pause(self):
        self.is_playing = False

    def resume(self):
        self.is_playing = True

    def stop(self):
        self.is_playing = False
        self.current_index = 0

    def get_next_turn(self) -> Optional[Tuple[Turn, list]]:
        """
        获取下一条回合记录

        Returns:
            (turn, inputs)，暂停或播放结束时返回 None
        """
        if not self.is_playing:
            return None

        if self.current_index >= len(self.replay.inputs):
            self.is_playing = False
            if self.on_complete_callback:
                self.on_complete_callback()
            return None

        entry = self.replay.inputs[self.current_index]
        self.current_index += 1

        if self.on_turn_callback:
            self.on_turn_callback(*entry)

        return entry

    def seek_to_turn(self, turn: Turn) -> bool:
        """
        跳转到第一条回合号 >= turn 的记录

        Returns:
            是否找到
        """
        for i, (recorded, _) in enumerate(self.replay.inputs):
            if recorded >= turn:
                self.current_index = i
                return True
        return False

    def get_progress(self) -> float:
        """获取播放进度 (0.0 - 1.0)"""
        if not self.replay.inputs:
            return 0.0
        return self.current_index / len(self.replay.inputs)

    def get_total_turns(self) -> int:
        return len(self.replay.inputs)

    def on_turn(self, callback: Callable):
        """设置回合回调 callback(turn, inputs)"""
        self.on_turn_callback = callback

    def on_complete(self, callback: Callable):
        self.on_complete_callback = callback

    def rebuild(self, input_handler: Callable[[World, object], None],
                until_turn: Optional[Turn] = None) -> World:
        """
        在初始状态的副本上重新应用输入

        Args:
            input_handler: 应用单个输入的函数 (world, input)
            until_turn: 只应用回合号 <= until_turn 的输入，None 表示全部

        Returns:
            重建后的世界，replay.initial 不会被修改
        """
        world = copy.deepcopy(self.replay.initial)
        for turn, inputs in self.replay.inputs:
            if until_turn is not None and turn > until_turn:
                break
            for value in inputs:
                input_handler(world, value)
        return world
