"""SignalManager 模块测试。

测试升级状态机：
- 第一次信号 IDLE -> GRACE_PERIOD，不强杀任何进程
- 第二次信号或超时 GRACE_PERIOD -> KILLING
- KILLING 向所有已登记 pid 发送 SIGKILL 并以 130 退出
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from unittest import mock

import pytest

from procmux.config import reload_config
from procmux.orchestrator import ProcessRegistry
from procmux.signal_manager import (
    EMERGENCY_EXIT_CODE,
    EscalationState,
    SignalManager,
)


@pytest.fixture
def exit_mock() -> mock.Mock:
    return mock.Mock()


@pytest.fixture
def registry_mock() -> mock.MagicMock:
    registry = mock.MagicMock(spec=ProcessRegistry)
    registry.pids = [101, 102]
    registry.kill_all.return_value = [101, 102]
    registry.__len__.return_value = 2
    return registry


class TestSignalManagerInit:
    def test_initial_state(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=5.0, on_emergency_exit=exit_mock)

        assert manager.state is EscalationState.IDLE
        assert manager.is_shutdown_requested is False
        assert manager.signals_received == 0
        assert manager.kill_timeout == 5.0

    def test_kill_timeout_from_config(self, registry_mock):
        with mock.patch.dict(os.environ, {"PROCMUX_KILL_TIMEOUT": "7"}):
            reload_config()
            manager = SignalManager(registry_mock)
        reload_config()

        assert manager.kill_timeout == 7.0

    def test_exit_code(self):
        assert EMERGENCY_EXIT_CODE == 130


class TestEscalation:
    @pytest.mark.asyncio
    async def test_first_signal_enters_grace_period(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=10.0, on_emergency_exit=exit_mock)
        manager._loop = asyncio.get_running_loop()

        manager._handle_signal(signal.SIGINT)

        assert manager.state is EscalationState.GRACE_PERIOD
        assert manager.is_shutdown_requested is True
        registry_mock.kill_all.assert_not_called()
        exit_mock.assert_not_called()

        manager._running = True
        await manager.stop()

    @pytest.mark.asyncio
    async def test_second_signal_kills(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=10.0, on_emergency_exit=exit_mock)
        manager._loop = asyncio.get_running_loop()

        manager._handle_signal(signal.SIGINT)
        manager._handle_signal(signal.SIGINT)

        assert manager.state is EscalationState.KILLING
        registry_mock.kill_all.assert_called_once_with(signal.SIGKILL)
        exit_mock.assert_called_once_with(130)
        assert manager.killed_pids == [101, 102]

    @pytest.mark.asyncio
    async def test_sigterm_then_sigint_kills(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=10.0, on_emergency_exit=exit_mock)
        manager._loop = asyncio.get_running_loop()

        manager._handle_signal(signal.SIGTERM)
        assert manager.state is EscalationState.GRACE_PERIOD

        manager._handle_signal(signal.SIGINT)
        assert manager.state is EscalationState.KILLING
        exit_mock.assert_called_once_with(EMERGENCY_EXIT_CODE)

    @pytest.mark.asyncio
    async def test_second_signal_cancels_timer(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=0.2, on_emergency_exit=exit_mock)
        manager._loop = asyncio.get_running_loop()

        manager._handle_signal(signal.SIGINT)
        manager._handle_signal(signal.SIGINT)
        await asyncio.sleep(0.4)

        # 只由信号强杀一次，计时器不会再次触发
        registry_mock.kill_all.assert_called_once()
        exit_mock.assert_called_once()

    @pytest.mark.asyncio
    async def test_timeout_kills(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=0.1, on_emergency_exit=exit_mock)
        manager._loop = asyncio.get_running_loop()

        manager._handle_signal(signal.SIGINT)
        exit_mock.assert_not_called()

        await asyncio.sleep(0.4)

        assert manager.state is EscalationState.KILLING
        registry_mock.kill_all.assert_called_once_with(signal.SIGKILL)
        exit_mock.assert_called_once_with(130)

    @pytest.mark.asyncio
    async def test_signals_while_killing_are_ignored(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=10.0, on_emergency_exit=exit_mock)
        manager._loop = asyncio.get_running_loop()

        for _ in range(4):
            manager._handle_signal(signal.SIGINT)

        assert manager.signals_received == 4
        registry_mock.kill_all.assert_called_once()
        exit_mock.assert_called_once()

    @pytest.mark.asyncio
    async def test_timer_is_not_renewed(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=0.3, on_emergency_exit=exit_mock)
        manager._loop = asyncio.get_running_loop()

        manager._handle_signal(signal.SIGINT)
        timer = manager._timeout_task
        await asyncio.sleep(0.05)

        assert manager._timeout_task is timer
        await asyncio.sleep(0.5)
        exit_mock.assert_called_once_with(130)

    @pytest.mark.asyncio
    async def test_stop_cancels_grace_timer(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=0.1, on_emergency_exit=exit_mock)
        manager._loop = asyncio.get_running_loop()
        manager._running = True

        manager._handle_signal(signal.SIGINT)
        await manager.stop()
        await asyncio.sleep(0.3)

        exit_mock.assert_not_called()
        registry_mock.kill_all.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    async def test_kills_registered_children(self, exit_mock):
        registry = ProcessRegistry()
        children = [await asyncio.create_subprocess_exec("sleep", "30") for _ in range(3)]
        for child in children:
            registry.register(child.pid)

        manager = SignalManager(registry, kill_timeout=10.0, on_emergency_exit=exit_mock)
        manager._loop = asyncio.get_running_loop()
        manager._handle_signal(signal.SIGINT)

        # 宽限期内不触碰子进程
        await asyncio.sleep(0.1)
        assert all(child.returncode is None for child in children)

        manager._handle_signal(signal.SIGINT)
        returncodes = await asyncio.wait_for(
            asyncio.gather(*(child.wait() for child in children)), timeout=5
        )

        assert returncodes == [-signal.SIGKILL] * 3
        assert sorted(manager.killed_pids) == sorted(child.pid for child in children)
        exit_mock.assert_called_once_with(130)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal handling")
class TestSignalManagerStartStop:
    """信号处理器安装（仅 POSIX）。"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=10.0, on_emergency_exit=exit_mock)

        await manager.start()
        assert manager._running is True
        assert manager._loop is not None

        await manager.stop()
        assert manager._running is False

    @pytest.mark.asyncio
    async def test_handlers_go_through_event_loop(self, registry_mock, exit_mock):
        """SIGINT 和 SIGTERM 都通过 loop.add_signal_handler 安装和移除。"""
        manager = SignalManager(registry_mock, kill_timeout=10.0, on_emergency_exit=exit_mock)
        loop = asyncio.get_running_loop()

        with mock.patch.object(loop, "add_signal_handler") as add, \
                mock.patch.object(loop, "remove_signal_handler") as remove:
            await manager.start()
            await manager.stop()

        assert [c.args[0] for c in add.call_args_list] == [signal.SIGINT, signal.SIGTERM]
        assert [c.args[0] for c in remove.call_args_list] == [signal.SIGINT, signal.SIGTERM]

    @pytest.mark.asyncio
    async def test_real_signals_escalate(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=10.0, on_emergency_exit=exit_mock)
        await manager.start()
        try:
            os.kill(os.getpid(), signal.SIGINT)
            await asyncio.sleep(0.1)
            assert manager.state is EscalationState.GRACE_PERIOD

            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.sleep(0.1)
            assert manager.state is EscalationState.KILLING
            exit_mock.assert_called_once_with(130)
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self, registry_mock, exit_mock):
        manager = SignalManager(registry_mock, kill_timeout=10.0, on_emergency_exit=exit_mock)
        await manager.start()
        await manager.start()
        await manager.stop()
        await manager.stop()
        assert manager._running is False
