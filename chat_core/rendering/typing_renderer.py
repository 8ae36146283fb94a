"""打字效果渲染器。

按固定间隔 tick，把 DeltaBuffer 中的字素簇逐步显示到目标消息上：

- 每次 tick 都重新读取缓冲区当前的字素数量，流式增长会被自动追上。
- 剩余越多步长越大（4/3/2/1），长回答的总显示时间有上限。
- 显示中的内容末尾带光标标记；全部显示且缓冲区已关闭后定稿：去掉光标、
  写入最终文本、取消 tick、释放会话。
- skip() 立即显示全部内容，只取消 tick，不影响网络读取。

同一时刻只有一个 TypingSession；start() 会先结束上一个会话。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Protocol

from chat_core.streaming.reconciler import DeltaBuffer


class RenderSink(Protocol):
    """渲染目标：通常是会话的内存消息列表。"""

    def update(self, message_id: str, content: str) -> None:
        ...

    def remove(self, message_id: str) -> None:
        ...


def step_size(remaining: int) -> int:
    if remaining > 400:
        return 4
    if remaining > 200:
        return 3
    if remaining > 80:
        return 2
    return 1


@dataclass
class TypingSession:
    target_message_id: str
    buffer: DeltaBuffer
    speed_ms: int
    revealed_count: int = 0
    tick_handle: Optional[asyncio.Task] = None
    skipped: bool = False
    finished: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def total(self) -> int:
        return len(self.buffer.graphemes)

    def revealed_text(self) -> str:
        return "".join(self.buffer.graphemes[: self.revealed_count])


class TypingRenderer:
    def __init__(self, sink: RenderSink, speed_ms: int = 50, cursor: str = " |"):
        self._sink = sink
        self._speed_ms = speed_ms
        self._cursor = cursor
        self._session: Optional[TypingSession] = None

    @property
    def session(self) -> Optional[TypingSession]:
        return self._session

    @property
    def live(self) -> bool:
        return self._session is not None

    def start(self, buffer: DeltaBuffer, message_id: str) -> TypingSession:
        """为一条助手消息开始打字会话。必须在事件循环中调用。"""

        previous = self._session
        if previous is not None:
            # 缓冲区已关闭时 skip() 会直接定稿并释放会话
            self.skip()
            if not previous.finished.is_set():
                self._dispose(previous)
        session = TypingSession(target_message_id=message_id, buffer=buffer, speed_ms=self._speed_ms)
        self._session = session
        self._sink.update(message_id, "")
        session.tick_handle = asyncio.get_running_loop().create_task(self._run(session))
        return session

    def notify(self) -> None:
        """缓冲区有新内容或已关闭。正常打字时由 tick 自行追上；跳过后直接提交。"""

        session = self._session
        if session is None or not session.skipped:
            return
        session.revealed_count = max(session.revealed_count, session.total)
        self._sink.update(session.target_message_id, session.buffer.aggregate_text)
        if session.buffer.closed:
            self._finalize(session)

    def skip(self) -> None:
        """立即显示全部文本。重复调用无副作用。"""

        session = self._session
        if session is None or session.skipped:
            return
        session.skipped = True
        self._cancel_tick(session)
        session.revealed_count = max(session.revealed_count, session.total)
        self._sink.update(session.target_message_id, session.buffer.aggregate_text)
        if session.buffer.closed:
            self._finalize(session)

    def discard(self, message_id: Optional[str] = None) -> None:
        """丢弃当前会话及其已显示内容（Provider 软失败时使用）。"""

        session = self._session
        if session is None:
            return
        if message_id is not None and session.target_message_id != message_id:
            return
        self._cancel_tick(session)
        self._sink.remove(session.target_message_id)
        self._dispose(session)

    def cancel(self) -> None:
        """取消 tick 并释放会话，不修改显示内容（切换会话时使用）。"""

        session = self._session
        if session is None:
            return
        self._cancel_tick(session)
        self._dispose(session)

    async def wait(self) -> None:
        """等待当前会话定稿或被释放。"""

        session = self._session
        if session is not None:
            await session.finished.wait()

    def tick(self) -> bool:
        """推进一次显示，返回会话是否已结束。"""

        session = self._session
        if session is None:
            return True
        return self._tick(session)

    async def _run(self, session: TypingSession) -> None:
        interval = session.speed_ms / 1000
        while not self._tick(session):
            await asyncio.sleep(interval)

    def _tick(self, session: TypingSession) -> bool:
        if session.finished.is_set():
            return True
        total = session.total
        if session.revealed_count >= total:
            if session.buffer.closed:
                self._finalize(session)
                return True
            return False
        step = step_size(total - session.revealed_count)
        session.revealed_count = min(total, session.revealed_count + step)
        self._sink.update(session.target_message_id, session.revealed_text() + self._cursor)
        return False

    def _finalize(self, session: TypingSession) -> None:
        session.revealed_count = max(session.revealed_count, session.total)
        self._sink.update(session.target_message_id, session.buffer.aggregate_text)
        self._cancel_tick(session)
        self._dispose(session)

    def _dispose(self, session: TypingSession) -> None:
        session.finished.set()
        if self._session is session:
            self._session = None

    @staticmethod
    def _cancel_tick(session: TypingSession) -> None:
        handle = session.tick_handle
        session.tick_handle = None
        if handle is None or handle.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if handle is not current:
            handle.cancel()
