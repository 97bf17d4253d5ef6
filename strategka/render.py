"""
渲染循环

把窗口事件转换为世界输入，录制到回放中，并按固定帧率推进和绘制世界。
窗口和绘制使用 pygame（可选依赖，安装 strategka[render]）。

回调约定：
- event_handler(world, event) -> List[Input]: 把窗口事件转换为输入
- input_handler(world, input) -> bool: 应用输入，返回 True 表示退出循环
- simulate(world, dt): 推进模拟，dt 为秒
- render(world) -> pygame.Surface: 绘制一帧
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from .config import get_config
from .errors import ReplayError
from .replay import Replay
from .world import Turn, World

logger = logging.getLogger(__name__)


@dataclass
class RenderInfo:
    """
    渲染窗口参数

    属性:
        width, height: 窗口尺寸（像素）
        title: 窗口标题
        fps: 每秒帧数，同时作为回放的每秒回合数
        save_replay: 退出或出错时保存回放的路径，None 表示不保存
    """
    width: int = 800
    height: int = 600
    title: str = "Strategka"
    fps: int = 30
    save_replay: Optional[str] = None

    @classmethod
    def from_config(cls) -> 'RenderInfo':
        """从全局配置创建"""
        render = get_config().render
        return cls(
            width=render.width,
            height=render.height,
            title=render.title,
            fps=render.fps,
            save_replay=render.save_replay,
        )


class RenderError(Exception):
    """渲染循环错误基类，cause 为原始异常"""

    prefix = "Render loop error"

    def __init__(self, cause: Exception):
        super().__init__(f"{self.prefix}: {cause}")
        self.cause = cause


class RenderReplayError(RenderError):
    prefix = "Replay error"


class EventHandlerError(RenderError):
    prefix = "Event handler error"


class InputHandlerError(RenderError):
    prefix = "Input handler error"


class SimulationError(RenderError):
    prefix = "Simulation error"


class RenderCallbackError(RenderError):
    prefix = "Render error"


def _record_and_save(info: RenderInfo, replay: Replay, turn: Turn, inputs: list):
    try:
        if inputs:
            replay.record(turn, inputs)
        if info.save_replay:
            replay.save(info.save_replay)
            logger.info(f"Replay saved to {info.save_replay}")
    except ReplayError as e:
        raise RenderReplayError(e.detach()) from e


def process_inputs(
    info: RenderInfo,
    state: World,
    replay: Replay,
    turn: Turn,
    events: Iterable,
    event_handler: Callable[[World, object], List],
    input_handler: Callable[[World, object], bool],
) -> bool:
    """
    处理本帧的全部事件

    事件被转换为输入并立即应用到世界上，
    本帧产生的输入作为一个回合记录到回放中（没有输入则不记录）。
    任一回调失败时，先记录已产生的输入（包括失败的那个）并保存回放，再抛出错误。

    Args:
        info: 渲染参数（save_replay 决定是否保存）
        state: 当前世界
        replay: 正在录制的回放
        turn: 当前回合号
        events: 本帧的窗口事件
        event_handler: 事件 -> 输入列表
        input_handler: 应用输入，返回是否退出

    Returns:
        True 如果需要退出循环（退出前已保存回放）
    """
    inputs = []
    need_exit = False
    for event in events:
        try:
            new_inputs = event_handler(state, event)
        except Exception as e:
            _record_and_save(info, replay, turn, inputs)
            raise EventHandlerError(e) from e

        for value in new_inputs:
            try:
                exit_requested = input_handler(state, value)
            except Exception as e:
                inputs.append(value)
                _record_and_save(info, replay, turn, inputs)
                raise InputHandlerError(e) from e
            inputs.append(value)
            if exit_requested:
                need_exit = True

    if inputs:
        try:
            replay.record(turn, inputs)
        except ReplayError as e:
            raise RenderReplayError(e.detach()) from e
    if need_exit:
        _record_and_save(info, replay, turn, [])
    return need_exit


def ensure_fps(fps: int, last_tick: float) -> float:
    """
    等待到本帧结束

    Args:
        fps: 目标帧率
        last_tick: 上一帧结束时的 time.perf_counter()

    Returns:
        每帧时间（秒）
    """
    frame_time = 1.0 / fps
    remaining = frame_time - (time.perf_counter() - last_tick)
    if remaining > 0:
        time.sleep(remaining)
    return frame_time


def render_loop(
    info: RenderInfo,
    state: World,
    event_handler: Callable[[World, object], List],
    input_handler: Callable[[World, object], bool],
    simulate: Callable[[World, float], None],
    render: Callable[[World], object],
) -> Replay:
    """
    启动窗口并运行渲染循环，直到 input_handler 请求退出

    Returns:
        录制的回放
    """
    import pygame

    pygame.init()
    try:
        screen = pygame.display.set_mode((info.width, info.height))
        pygame.display.set_caption(info.title)

        replay = Replay(state, info.fps)
        turn = 0
        last_tick = time.perf_counter()
        while True:
            if process_inputs(info, state, replay, turn, pygame.event.get(),
                              event_handler, input_handler):
                break

            dt = ensure_fps(info.fps, last_tick)
            try:
                simulate(state, dt)
            except Exception as e:
                raise SimulationError(e) from e
            try:
                frame = render(state)
            except Exception as e:
                raise RenderCallbackError(e) from e

            screen.blit(frame, (0, 0))
            pygame.display.flip()
            last_tick = time.perf_counter()
            turn += 1

        logger.info(f"Render loop finished after {turn} turns")
        return replay
    finally:
        pygame.quit()
