"""
确定性随机数生成器

用于生成可重放的初始世界：相同种子总是生成相同的世界，
回放文件中保存的是生成后的状态，因此加载回放不依赖 RNG。
"""


class DeterministicRNG:
    """
    确定性随机数生成器

    使用 Xorshift32 算法，纯整数运算，保证跨平台一致。
    64 位种子会先折叠为 32 位状态。

    属性:
        state (int):
            RNG 的内部状态（32位非零整数）。

    示例:
        rng = DeterministicRNG(seed=42)
        x = rng.uniform_range(0.0, 800.0)
    """

    def __init__(self, seed: int):
        """
        初始化 RNG

        Args:
            seed: 随机种子（u64）

        Note:
            折叠后为 0 的种子会被改为 1（算法要求状态非零）
        """
        seed &= 0xFFFFFFFFFFFFFFFF
        self.state = (seed ^ (seed >> 32)) & 0xFFFFFFFF
        if self.state == 0:
            self.state = 1

    def next_uint32(self) -> int:
        """
        生成下一个 32 位无符号整数

        Returns:
            随机整数 [0, 4294967295]
        """
        x = self.state
        x ^= (x << 13) & 0xFFFFFFFF
        x ^= (x >> 17)
        x ^= (x << 5) & 0xFFFFFFFF
        self.state = x
        return x

    def uniform(self) -> float:
        """生成 [0, 1) 范围的浮点数"""
        return self.next_uint32() / 0x100000000

    def uniform_range(self, min_val: float, max_val: float) -> float:
        """
        生成指定范围的随机浮点数

        Returns:
            [min_val, max_val) 范围内的浮点数
        """
        return min_val + self.uniform() * (max_val - min_val)
