"""
回放核心配置模块

支持从 JSON 配置文件加载配置。

使用方法：
    from strategka.config import get_config

    print(get_config().io.chunk_size)

    # 或指定配置文件
    load_config('custom_config.json')

配置文件格式：
    config.json - 见项目根目录的 config.json 示例
"""

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional, Union, get_args, get_origin

logger = logging.getLogger(__name__)


@dataclass
class ReplayIOConfig:
    """
    文件读写配置

    属性:
        chunk_size: 流式加载时每次读取的字节数（默认 8 MiB）
    """
    chunk_size: int = 8 * 1024 * 1024


@dataclass
class RecordingConfig:
    """
    录制配置

    属性:
        default_rate: 未指定时使用的每秒回合数
    """
    default_rate: int = 60


@dataclass
class RenderConfig:
    """
    渲染循环配置
    """

    width: int = 800
    height: int = 600
    title: str = "Strategka"
    fps: int = 30
    save_replay: Optional[str] = None


@dataclass
class Config:
    """
    全局配置类

    使用方法:
        from strategka.config import get_config

        print(get_config().recording.default_rate)

    从文件加载:
        get_config().load_from_file('config.json')

    保存到文件:
        get_config().save_to_file('config.json')
    """

    io: ReplayIOConfig = field(default_factory=ReplayIOConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    render: RenderConfig = field(default_factory=RenderConfig)

    # 配置文件路径
    _config_path: Optional[str] = field(default=None, repr=False)
    _loaded: bool = field(default=False, repr=False)

    def load_from_file(self, path: str) -> bool:
        """
        从 JSON 文件加载配置

        Args:
            path: 配置文件路径

        Returns:
            True 如果成功
        """
        config_path = Path(path)
        if not config_path.exists():
            logger.warning(f"Config file does not exist: {path}")
            return False

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Config JSON parse error in {path}: {e}")
            return False
        except OSError as e:
            logger.error(f"Failed to read config {path}: {e}")
            return False

        if 'io' in data:
            self._update_dataclass(self.io, data['io'])

        if 'recording' in data:
            self._update_dataclass(self.recording, data['recording'])

        if 'render' in data:
            self._update_dataclass(self.render, data['render'])

        self._config_path = str(path)
        self._loaded = True
        logger.info(f"Loaded config: {path}")
        return True

    def save_to_file(self, path: str) -> bool:
        """
        保存配置到 JSON 文件

        Args:
            path: 配置文件路径

        Returns:
            True 如果成功
        """
        try:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error(f"Failed to save config {path}: {e}")
            return False

        logger.info(f"Saved config: {path}")
        return True

    def reload(self) -> bool:
        """
        重新加载配置文件

        Returns:
            True 如果成功
        """
        if self._config_path:
            return self.load_from_file(self._config_path)
        return False

    @staticmethod
    def _update_dataclass(obj, data: dict):
        """
        更新 dataclass 对象的属性

        值按字段类型转换（例如 "1024" -> 1024），
        未知的键和无法转换的值记录警告后跳过。
        """
        types = {f.name: f.type for f in fields(obj)}
        for key, value in data.items():
            if key not in types:
                logger.warning(f"Unknown config key ignored: {key}")
                continue
            try:
                setattr(obj, key, _coerce(types[key], value))
            except (TypeError, ValueError):
                logger.warning(
                    f"Invalid value for config key {key}: {value!r}, "
                    f"keeping {getattr(obj, key)!r}"
                )

    def to_dict(self) -> dict:
        """转换为字典"""
        return {
            'io': asdict(self.io),
            'recording': asdict(self.recording),
            'render': asdict(self.render),
        }


def _coerce(expected, value: Any):
    """把 JSON 值转换为字段类型，支持 Optional[X]"""
    if get_origin(expected) is Union:
        args = get_args(expected)
        if value is None and type(None) in args:
            return None
        expected = next(t for t in args if t is not type(None))
    if value is None:
        raise TypeError("None is not allowed")
    # bool 是 int 的子类，不能当作数值
    if isinstance(value, bool) and expected is not bool:
        raise TypeError(f"Expected {expected.__name__}, got bool")
    if isinstance(value, expected):
        return value
    return expected(value)


# ============ 全局配置实例 ============

CONFIG = Config()


def get_config() -> Config:
    """获取全局配置"""
    return CONFIG


def load_config(path: str) -> Config:
    """
    加载指定配置文件

    Args:
        path: 配置文件路径

    Returns:
        Config 实例
    """
    CONFIG.load_from_file(path)
    return CONFIG


def reset_config():
    """重置配置为默认值"""
    global CONFIG
    CONFIG = Config()
