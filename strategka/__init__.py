"""
Deterministic replay core

录制模拟的初始状态和按回合排列的外部输入，
保存为带版本的二进制容器，并能从容器（包括分块读取的字节流）重建回放。
"""

from .errors import (
    ContextError,
    DecoderError,
    EncoderError,
    IncoherentTurnError,
    IncompleteError,
    InvalidLengthError,
    InvalidMagicError,
    MissingTurnInputError,
    ParsingError,
    ReplayError,
    ReplayIOError,
    UnsupportedCoreVersionError,
    UnsupportedGameVersionError,
)
from .replay import (
    REPLAY_FORMAT_VERSION,
    DecodeResult,
    Replay,
    ReplayPlayer,
    decode_replay,
    load_stream,
)
from .world import Turn, World

__all__ = [
    'World', 'Turn',
    'Replay', 'ReplayPlayer', 'DecodeResult',
    'decode_replay', 'load_stream', 'REPLAY_FORMAT_VERSION',
    'ReplayError', 'IncoherentTurnError', 'ReplayIOError', 'InvalidMagicError',
    'UnsupportedCoreVersionError', 'UnsupportedGameVersionError',
    'MissingTurnInputError', 'ParsingError', 'InvalidLengthError',
    'EncoderError', 'DecoderError', 'ContextError', 'IncompleteError',
]
