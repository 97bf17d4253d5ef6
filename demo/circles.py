"""
Bouncing circles demo with replay recording

操作：
- 左键：选中鼠标下的圆
- 右键：让选中的圆向鼠标位置移动
- ESC / 关闭窗口：结束模拟并保存 circles.replay

重放已保存的文件：
    python demo/circles.py --replay circles.replay
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

# 添加父目录到路径
ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT_DIR))

from strategka.config import load_config
from strategka.render import RenderInfo, render_loop
from strategka.replay import ReplayPlayer
from strategka.rng import DeterministicRNG
from strategka.world import World

logger = logging.getLogger(__name__)

Vec2 = Tuple[float, float]

SELECTED_COLOR = (50, 127, 150, 200)
DEFAULT_COLOR = (220, 140, 75, 180)


# ==================== 输入 ====================

class CirclesInput:
    """圆形世界的输入基类"""

    kind = ''

    def to_dict(self) -> dict:
        return {'kind': self.kind}

    @classmethod
    def from_dict(cls, data: dict) -> 'CirclesInput':
        kind = data['kind']
        if kind == Select.kind:
            return Select(index=data['index'])
        if kind == Move.kind:
            return Move(x=data['x'], y=data['y'])
        if kind == EndSimulation.kind:
            return EndSimulation()
        raise ValueError(f"Unknown circles input: {kind}")


@dataclass
class Select(CirclesInput):
    """玩家选中第 index 个圆"""
    index: int
    kind = 'select'

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'index': self.index}


@dataclass
class Move(CirclesInput):
    """让选中的圆向 (x, y) 移动"""
    x: float
    y: float
    kind = 'move'

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'x': self.x, 'y': self.y}


@dataclass
class EndSimulation(CirclesInput):
    """结束模拟"""
    kind = 'end'


# ==================== 世界 ====================

@dataclass
class Circle:
    """
    单个圆

    属性:
        x, y: 圆心位置（像素）
        vx, vy: 速度（像素/秒）
        radius: 半径
        selected: 是否被选中
        target: 弹簧牵引的目标点，None 表示自由运动
    """
    x: float
    y: float
    vx: float
    vy: float
    radius: float = 15.0
    selected: bool = False
    target: Optional[Vec2] = None

    @classmethod
    def random(cls, rng: DeterministicRNG, width: int, height: int) -> 'Circle':
        return cls(
            x=rng.uniform_range(0.0, width),
            y=rng.uniform_range(0.0, height),
            vx=rng.uniform_range(0.0, width),
            vy=rng.uniform_range(0.0, height),
        )

    def step(self, dt: float, width: int, height: int):
        """
        推进一步

        碰到边界时反弹；有目标点时按阻尼弹簧加速。
        """
        self.x += self.vx * dt
        self.y += self.vy * dt

        if self.x < 0.0 or self.x > width:
            self.vx = -self.vx
        if self.y < 0.0 or self.y > height:
            self.vy = -self.vy

        if self.target is not None:
            mass, k, c = 1.0, 1.0, 0.3
            tx, ty = self.target
            self.vx += (k * (tx - self.x) - c * self.vx) / mass
            self.vy += (k * (ty - self.y) - c * self.vy) / mass

    def contains(self, x: float, y: float) -> bool:
        dx, dy = self.x - x, self.y - y
        return dx * dx + dy * dy < self.radius * self.radius

    def to_dict(self) -> dict:
        return {
            'x': self.x, 'y': self.y, 'vx': self.vx, 'vy': self.vy,
            'radius': self.radius, 'selected': self.selected,
            'target': list(self.target) if self.target is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Circle':
        target = data.get('target')
        return cls(
            x=data['x'], y=data['y'], vx=data['vx'], vy=data['vy'],
            radius=data.get('radius', 15.0),
            selected=data.get('selected', False),
            target=tuple(target) if target is not None else None,
        )


@dataclass
class CirclesWorld(World):
    """
    弹跳圆形世界

    属性:
        width, height: 世界尺寸
        circles: 所有圆
        selected: 当前选中的圆的下标
    """
    width: int = 0
    height: int = 0
    circles: List[Circle] = field(default_factory=list)
    selected: Optional[int] = None

    Input = CirclesInput

    @classmethod
    def magic_bytes(cls) -> bytes:
        return b'crls'

    @classmethod
    def current_version(cls) -> int:
        return 1

    @classmethod
    def generate(cls, width: int, height: int, circles_num: int, seed: int) -> 'CirclesWorld':
        """用种子生成随机世界"""
        rng = DeterministicRNG(seed)
        circles = [Circle.random(rng, width, height) for _ in range(circles_num)]
        return cls(width=width, height=height, circles=circles)

    def to_dict(self) -> dict:
        return {
            'width': self.width,
            'height': self.height,
            'circles': [c.to_dict() for c in self.circles],
            'selected': self.selected,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CirclesWorld':
        return cls(
            width=data['width'],
            height=data['height'],
            circles=[Circle.from_dict(c) for c in data['circles']],
            selected=data.get('selected'),
        )

    def process_input(self, value: CirclesInput):
        if isinstance(value, Select):
            if self.selected is not None:
                self.circles[self.selected].selected = False
            self.circles[value.index].selected = True
            self.selected = value.index
        elif isinstance(value, Move):
            if self.selected is not None:
                self.circles[self.selected].target = (value.x, value.y)

    def step(self, dt: float):
        for circle in self.circles:
            circle.step(dt, self.width, self.height)

    def circle_at(self, x: float, y: float) -> Optional[int]:
        """返回点 (x, y) 下的第一个圆的下标"""
        for i, circle in enumerate(self.circles):
            if circle.contains(x, y):
                return i
        return None


# ==================== pygame 回调 ====================

def handle_event(world: CirclesWorld, event) -> List[CirclesInput]:
    """把 pygame 事件转换为输入"""
    import pygame

    if event.type == pygame.QUIT:
        return [EndSimulation()]
    if event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
        return [EndSimulation()]
    if event.type == pygame.MOUSEBUTTONDOWN:
        x, y = event.pos
        if event.button == 1:
            index = world.circle_at(float(x), float(y))
            return [Select(index)] if index is not None else []
        if event.button == 3:
            return [Move(float(x), float(y))]
    return []


def handle_input(world: CirclesWorld, value: CirclesInput) -> bool:
    world.process_input(value)
    return isinstance(value, EndSimulation)


def render(world: CirclesWorld):
    """绘制一帧"""
    import pygame

    surface = pygame.Surface((world.width, world.height), pygame.SRCALPHA)
    surface.fill((0, 0, 0, 255))
    for circle in world.circles:
        color = SELECTED_COLOR if circle.selected else DEFAULT_COLOR
        pygame.draw.circle(surface, color, (int(circle.x), int(circle.y)), int(circle.radius))
    return surface


def main():
    parser = argparse.ArgumentParser(description="Bouncing circles replay demo")
    parser.add_argument('--config', default=str(ROOT_DIR / 'config.json'),
                        help="JSON config file")
    parser.add_argument('--replay', help="Print the inputs of a saved replay and exit")
    parser.add_argument('--seed', type=int, default=42)
    parser.add_argument('--circles', type=int, default=20)
    args = parser.parse_args()

    if args.config:
        load_config(args.config)

    if args.replay:
        player = ReplayPlayer.from_file(CirclesWorld, args.replay)
        player.play()
        while True:
            entry = player.get_next_turn()
            if entry is None:
                break
            turn, inputs = entry
            print(f"turn {turn}: {inputs}")
        return

    info = RenderInfo.from_config()
    if info.save_replay is None:
        info.save_replay = 'circles.replay'

    world = CirclesWorld.generate(info.width, info.height, args.circles, args.seed)
    render_loop(
        info,
        world,
        handle_event,
        handle_input,
        lambda w, dt: w.step(dt),
        render,
    )


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    main()
