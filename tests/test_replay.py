"""
Unit tests for the replay container and the Replay aggregate
"""

import io
import logging
import struct

import msgpack
import pytest

from demo.circles import CirclesWorld
from strategka.config import get_config, reset_config
from strategka.errors import (
    DecoderError,
    EncoderError,
    IncoherentTurnError,
    IncompleteError,
    InvalidLengthError,
    InvalidMagicError,
    MissingTurnInputError,
    ReplayIOError,
    UnsupportedCoreVersionError,
    UnsupportedGameVersionError,
)
from strategka.replay import (
    REPLAY_FORMAT_VERSION,
    Replay,
    ReplayPlayer,
    decode_replay,
    load_stream,
)
from worlds import Add, CounterInput, CounterWorld, CounterWorldV2, EmptyWorld, SilentWorld, Sub


def make_replay() -> Replay:
    """rate=60, field1=42, 回合 (0, []), (1, [Add(4)]), (2, [Sub(2), Add(8)])"""
    replay = Replay(CounterWorld(field1=42), 60)
    replay.record(0, [])
    replay.record(1, [Add(4)])
    replay.record(2, [Sub(2), Add(8)])
    return replay


def header(world_magic: bytes = b'TWD2', game_version: int = 1, rate: int = 60,
           core_version: int = REPLAY_FORMAT_VERSION) -> bytes:
    return b'STGR' + struct.pack('!I', core_version) + world_magic + struct.pack('!II', game_version, rate)


def block(payload: bytes) -> bytes:
    return struct.pack('!Q', len(payload)) + payload


class OneByteReader:
    """每次最多返回一个字节的数据源"""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0
        self.reads = 0

    def read(self, n: int) -> bytes:
        self.reads += 1
        chunk = self.data[self.pos:self.pos + min(n, 1)]
        self.pos += len(chunk)
        return chunk


# ==================== 录制 测试 ====================

class TestRecord:
    """Replay.record 测试"""

    def test_new_replay_is_empty(self):
        """测试新建回放"""
        world = CounterWorld(field1=42)
        replay = Replay.new(world, 30)

        assert replay.rate == 30
        assert replay.initial == world
        assert replay.initial is not world
        assert replay.inputs == []
        assert replay.last_turn is None

    def test_default_rate_from_config(self):
        """测试默认每秒回合数来自配置"""
        try:
            get_config().recording.default_rate = 120
            assert Replay(CounterWorld()).rate == 120
        finally:
            reset_config()

    def test_monotonic_turns(self):
        """测试回合号必须严格递增"""
        replay = Replay(CounterWorld(field1=42), 60)
        replay.record(1, [Add(1)])

        with pytest.raises(IncoherentTurnError) as info:
            replay.record(0, [Add(2)])

        assert (info.value.last, info.value.attempted) == (1, 0)
        assert replay.inputs == [(1, [Add(1)])]

    def test_same_turn_rejected(self):
        """测试重复回合号"""
        replay = Replay(CounterWorld(), 60)
        replay.record(5, [])

        with pytest.raises(IncoherentTurnError):
            replay.record(5, [Add(1)])

        replay.record(6, [Add(1)])
        assert [turn for turn, _ in replay.inputs] == [5, 6]

    def test_gaps_allowed(self):
        """测试回合号可以跳跃"""
        replay = Replay(CounterWorld(), 60)
        replay.record(3, [])
        replay.record(100, [Add(1)])

        assert replay.last_turn == 100

    def test_inputs_are_copied(self):
        """测试录制的输入与调用者的列表无关"""
        inputs = [Add(1)]
        replay = Replay(CounterWorld(), 60)
        replay.record(0, inputs)

        inputs.append(Sub(3))
        inputs[0].value = 99

        assert replay.inputs == [(0, [Add(1)])]

    def test_turn_range(self):
        """测试回合号超出 u64"""
        replay = Replay(CounterWorld(), 60)

        with pytest.raises(ValueError):
            replay.record(-1, [])
        with pytest.raises(ValueError):
            replay.record(1 << 64, [])

    def test_rate_range(self):
        """测试 rate 超出 u32"""
        with pytest.raises(ValueError):
            Replay(CounterWorld(), 1 << 32)
        with pytest.raises(ValueError):
            Replay(CounterWorld(), -1)


# ==================== 编解码 测试 ====================

class TestEncodeDecode:
    """Replay 编解码测试"""

    @pytest.mark.parametrize('replay', [
        Replay(EmptyWorld(), 60),
        Replay(CounterWorld(field1=42), 60),
    ])
    def test_empty_logs(self, replay):
        """测试没有输入的回放"""
        assert Replay.decode(replay.world_cls, replay.to_bytes()) == replay

    def test_round_trip(self):
        """测试完整回放的编解码"""
        replay = make_replay()

        decoded = Replay.decode(CounterWorld, replay.to_bytes())

        assert decoded == replay
        assert decoded.inputs[2] == (2, [Sub(2), Add(8)])

    def test_single_turns(self):
        """测试只有一个回合的回放"""
        for inputs in ([], [Add(4)], [Add(4), Sub(2)]):
            replay = Replay(CounterWorld(field1=42), 60)
            replay.record(1, inputs)
            assert Replay.decode(CounterWorld, replay.to_bytes()) == replay

    def test_large_turn_and_rate(self):
        """测试边界值"""
        replay = Replay(CounterWorld(field1=-7), 0xFFFFFFFF)
        replay.record((1 << 64) - 1, [Add(1 << 40)])

        assert Replay.decode(CounterWorld, replay.to_bytes()) == replay

    def test_layout(self):
        """测试字节布局"""
        replay = Replay(CounterWorld(field1=42), 60)
        replay.record(7, [Add(4)])

        expected = (
            header()
            + block(msgpack.packb({'field1': 42}))
            + struct.pack('!Q', 1)
            + struct.pack('!Q', 7)
            + struct.pack('!Q', 1)
            + block(msgpack.packb({'op': 'add', 'value': 4}))
        )
        assert replay.to_bytes() == expected

    def test_encode_to_sink(self):
        """测试写入任意输出流"""
        replay = make_replay()
        sink = io.BytesIO()
        replay.encode(sink)

        assert sink.getvalue() == replay.to_bytes()

    def test_trailing_bytes_ignored(self):
        """测试回放之后的字节被忽略"""
        data = make_replay().to_bytes()

        result = decode_replay(CounterWorld, data + b'garbage')

        assert result.replay == make_replay()
        assert result.consumed == len(data)
        assert not result.initial_defaulted

    def test_invalid_world_magic_on_encode(self):
        """测试世界魔数长度错误"""
        class BadWorld(CounterWorld):
            @classmethod
            def magic_bytes(cls) -> bytes:
                return b'TOOLONG'

        with pytest.raises(EncoderError):
            Replay(BadWorld(), 60).to_bytes()


# ==================== 格式校验 测试 ====================

class TestGuards:
    """魔数和版本检查测试"""

    def test_core_magic(self):
        """测试核心魔数损坏"""
        data = bytearray(make_replay().to_bytes())
        data[0] ^= 0xFF

        with pytest.raises(InvalidMagicError) as info:
            Replay.decode(CounterWorld, data)

        assert info.value.found == bytes(data[:4])
        assert info.value.path == ('core magic bytes',)

    def test_game_magic(self):
        """测试游戏魔数损坏"""
        data = bytearray(make_replay().to_bytes())
        data[9] ^= 0xFF

        with pytest.raises(InvalidMagicError) as info:
            Replay.decode(CounterWorld, data)

        assert info.value.expected == b'TWD2'
        assert info.value.path == ('game magic bytes',)

    def test_wrong_world_type(self):
        """测试用错误的世界类型加载"""
        data = make_replay().to_bytes()

        with pytest.raises(InvalidMagicError):
            Replay.decode(EmptyWorld, data)

    def test_core_version(self):
        """测试不支持的格式版本"""
        data = header(core_version=REPLAY_FORMAT_VERSION + 1) + block(b'') + struct.pack('!Q', 0)

        with pytest.raises(UnsupportedCoreVersionError) as info:
            Replay.decode(CounterWorld, data)

        assert info.value.version == REPLAY_FORMAT_VERSION + 1

    def test_game_version(self):
        """测试不支持的游戏版本"""
        data = header(game_version=2) + block(b'') + struct.pack('!Q', 0)

        with pytest.raises(UnsupportedGameVersionError) as info:
            Replay.decode(CounterWorld, data)

        assert info.value.version == 2
        assert info.value.path == ('game version',)

    def test_guard_version_accepts_older(self):
        """测试新版本世界读取旧版本文件"""
        data = make_replay().to_bytes()

        decoded = Replay.decode(CounterWorldV2, data)

        assert decoded.initial == CounterWorldV2(field1=42)
        assert decoded.inputs == make_replay().inputs


# ==================== 空块与错误负载 测试 ====================

class TestBlocks:
    """初始状态块和输入块测试"""

    def test_empty_initial_block_defaults(self, caplog):
        """测试空初始状态块使用默认值"""
        data = header() + block(b'') + struct.pack('!Q', 0)

        with caplog.at_level(logging.WARNING):
            result = decode_replay(CounterWorld, data)

        assert result.initial_defaulted
        assert result.replay.initial == CounterWorld()
        assert result.replay.rate == 60
        assert 'Initial world block is empty' in caplog.text

    def test_stateless_world_round_trip(self):
        """测试没有状态的世界编码为空块"""
        replay = Replay(EmptyWorld(), 24)
        data = replay.to_bytes()

        assert data[20:28] == struct.pack('!Q', 0)
        result = decode_replay(EmptyWorld, data)
        assert result.initial_defaulted
        assert result.replay == replay

    def test_missing_turn_input(self):
        """测试输入块为空"""
        replay = Replay(SilentWorld(level=3), 60)
        replay.record(0, [Add(1)])
        data = replay.to_bytes()

        with pytest.raises(MissingTurnInputError) as info:
            Replay.decode(SilentWorld, data)

        assert info.value.path[0] == 'inputs'
        assert 'turn inputs' in info.value.path

    def test_malformed_initial_payload(self):
        """测试初始状态负载损坏"""
        data = header() + block(b'\x01\x02') + struct.pack('!Q', 0)

        with pytest.raises(DecoderError) as info:
            Replay.decode(CounterWorld, data)

        assert info.value.path == ('initial world', 'block body')

    def test_initial_payload_wrong_shape(self):
        """测试初始状态负载结构不符"""
        data = header() + block(msgpack.packb({'other': 1})) + struct.pack('!Q', 0)

        with pytest.raises(DecoderError):
            Replay.decode(CounterWorld, data)

    def test_initial_payload_wrong_type(self):
        """测试转换函数抛出任意异常都映射为 DecoderError"""
        payload = msgpack.packb({'width': 1, 'height': 1, 'circles': [1], 'selected': None})
        data = header(world_magic=b'crls') + block(payload) + struct.pack('!Q', 0)

        with pytest.raises(DecoderError) as info:
            load_stream(CirclesWorld, io.BytesIO(data), chunk_size=1)

        assert isinstance(info.value.cause, AttributeError)
        assert info.value.path == ('initial world', 'block body')


# ==================== 截断 测试 ====================

class TestTruncated:
    """截断输入测试"""

    def test_truncated_header(self):
        """测试头部截断"""
        data = make_replay().to_bytes()

        with pytest.raises(IncompleteError) as info:
            Replay.decode(CounterWorld, data[:10])

        assert info.value.needed == 2
        assert info.value.path == ('game magic bytes',)

    def test_truncated_block_in_complete_buffer(self):
        """测试完整缓冲区中初始状态块截断"""
        data = make_replay().to_bytes()

        with pytest.raises(InvalidLengthError) as info:
            Replay.decode(CounterWorld, data[:30])

        assert (info.value.declared, info.value.available) == (9, 2)

    def test_truncated_block_in_partial_buffer(self):
        """测试流式缓冲区中初始状态块截断"""
        data = make_replay().to_bytes()

        with pytest.raises(IncompleteError) as info:
            decode_replay(CounterWorld, data[:30], partial_input=True)

        assert info.value.needed == 7

    def test_every_prefix_is_incomplete(self):
        """测试流式模式下任意前缀都只是不完整"""
        data = make_replay().to_bytes()

        for end in range(len(data)):
            with pytest.raises(IncompleteError):
                decode_replay(CounterWorld, data[:end], partial_input=True)


# ==================== 文件 测试 ====================

class TestSaveLoad:
    """保存和加载测试"""

    def test_save_load(self, tmp_path):
        """测试文件往返"""
        path = tmp_path / 'counter.replay'
        replay = make_replay()

        replay.save(path)
        loaded = Replay.load(CounterWorld, path)

        assert loaded == replay
        assert path.read_bytes() == replay.to_bytes()

    def test_chunk_sizes_equivalent(self, tmp_path):
        """测试分块大小不影响结果"""
        path = tmp_path / 'counter.replay'
        make_replay().save(path)

        one_byte = Replay.load(CounterWorld, path, chunk_size=1)
        whole = Replay.load(CounterWorld, path, chunk_size=1 << 20)

        assert one_byte == whole == make_replay()

    def test_chunk_size_from_config(self, tmp_path):
        """测试默认分块大小来自配置"""
        path = tmp_path / 'counter.replay'
        make_replay().save(path)
        try:
            get_config().io.chunk_size = 3
            assert Replay.load(CounterWorld, path) == make_replay()
        finally:
            reset_config()

    def test_stream_stops_at_end_of_replay(self):
        """测试解码成功后不再读取"""
        data = make_replay().to_bytes()
        source = OneByteReader(data + b'x' * 100)

        assert load_stream(CounterWorld, source, chunk_size=1) == make_replay()
        assert source.pos == len(data)

    def test_truncated_file(self, tmp_path, caplog):
        """测试文件被截断"""
        path = tmp_path / 'truncated.replay'
        path.write_bytes(make_replay().to_bytes()[:-3])

        with caplog.at_level(logging.ERROR):
            with pytest.raises(IncompleteError) as info:
                Replay.load(CounterWorld, path, chunk_size=4)

        assert info.value.needed == 3
        assert 'truncated' in caplog.text

    def test_empty_file(self, tmp_path):
        """测试空文件"""
        path = tmp_path / 'empty.replay'
        path.write_bytes(b'')

        with pytest.raises(IncompleteError) as info:
            Replay.load(CounterWorld, path)

        assert info.value.needed == 4

    def test_corrupted_file_fails_fast(self):
        """测试损坏的文件立即失败"""
        data = bytearray(make_replay().to_bytes())
        data[1] = 0
        source = OneByteReader(bytes(data))

        with pytest.raises(InvalidMagicError):
            load_stream(CounterWorld, source, chunk_size=1)

        assert source.pos == 4

    def test_missing_file(self, tmp_path):
        """测试文件不存在"""
        with pytest.raises(ReplayIOError):
            Replay.load(CounterWorld, tmp_path / 'missing.replay')

    def test_failed_save_keeps_previous_file(self, tmp_path):
        """测试编码失败时已有文件保持不变"""
        path = tmp_path / 'session.replay'
        make_replay().save(path)
        previous = path.read_bytes()

        broken = make_replay()
        broken.record(3, [CounterInput('add', object())])
        with pytest.raises(EncoderError):
            broken.save(path)

        assert path.read_bytes() == previous

    def test_failed_save_does_not_create_file(self, tmp_path):
        """测试编码失败时不创建文件"""
        path = tmp_path / 'new.replay'
        broken = Replay(CounterWorld(), 60)
        broken.record(0, [CounterInput('add', object())])

        with pytest.raises(EncoderError):
            broken.save(path)

        assert not path.exists()

    def test_save_to_directory_fails(self, tmp_path):
        """测试无法创建文件"""
        with pytest.raises(ReplayIOError):
            make_replay().save(tmp_path)

    def test_invalid_chunk_size(self):
        """测试非法分块大小"""
        with pytest.raises(ValueError):
            load_stream(CounterWorld, io.BytesIO(b''), chunk_size=0)


# ==================== 播放 测试 ====================

class TestReplayPlayer:
    """ReplayPlayer 测试"""

    def test_play_all_turns(self):
        """测试按顺序播放"""
        player = ReplayPlayer(make_replay())
        completed = []
        player.on_complete(lambda: completed.append(True))
        player.play()

        turns = []
        while True:
            entry = player.get_next_turn()
            if entry is None:
                break
            turns.append(entry[0])

        assert turns == [0, 1, 2]
        assert completed == [True]
        assert not player.is_playing

    def test_paused_player(self):
        """测试暂停时不返回回合"""
        player = ReplayPlayer(make_replay())

        assert player.get_next_turn() is None
        player.play()
        player.pause()
        assert player.get_next_turn() is None
        player.resume()
        assert player.get_next_turn() == (0, [])

    def test_seek_and_progress(self):
        """测试跳转和进度"""
        player = ReplayPlayer(make_replay())
        player.play()

        assert player.seek_to_turn(2)
        assert player.get_progress() == pytest.approx(2 / 3)
        assert player.get_next_turn() == (2, [Sub(2), Add(8)])
        assert not player.seek_to_turn(10)
        assert player.get_total_turns() == 3

    def test_turn_callback(self):
        """测试回合回调"""
        seen = []
        player = ReplayPlayer(make_replay())
        player.on_turn(lambda turn, inputs: seen.append((turn, len(inputs))))
        player.play()
        player.get_next_turn()
        player.get_next_turn()

        assert seen == [(0, 0), (1, 1)]

    def test_rebuild(self):
        """测试在初始状态副本上重放输入"""
        replay = make_replay()
        player = ReplayPlayer(replay)

        final = player.rebuild(CounterWorld.apply)
        partial = player.rebuild(CounterWorld.apply, until_turn=1)

        assert final.field1 == 42 + 4 - 2 + 8
        assert partial.field1 == 46
        assert replay.initial.field1 == 42

    def test_from_file(self, tmp_path):
        """测试从文件创建播放器"""
        path = tmp_path / 'counter.replay'
        make_replay().save(path)

        player = ReplayPlayer.from_file(CounterWorld, path)

        assert player.get_total_turns() == 3
