import pytest

from pianotrap.core.exceptions import BootstrapError
from pianotrap.core.services import BaseService, ServiceSupervisor


class _RecordingService(BaseService):
    def __init__(self, name: str, log: list[str], *, fail_start: bool = False):
        super().__init__(name)
        self._log = log
        self._fail_start = fail_start

    async def _start(self) -> None:
        if self._fail_start:
            raise BootstrapError(f"{self.name} unavailable")
        self._log.append(f"start {self.name}")

    async def _stop(self) -> None:
        self._log.append(f"stop {self.name}")


@pytest.mark.asyncio
async def test_services_stop_in_reverse_order():
    log: list[str] = []
    services = [_RecordingService(name, log) for name in ("routing", "terminal", "client")]
    supervisor = ServiceSupervisor(services)

    await supervisor.start_all()
    assert all(service.ready.is_set() for service in services)
    await supervisor.stop_all()
    await supervisor.stop_all()

    assert log == [
        "start routing",
        "start terminal",
        "start client",
        "stop client",
        "stop terminal",
        "stop routing",
    ]


@pytest.mark.asyncio
async def test_start_failure_rolls_back_started_services():
    log: list[str] = []
    supervisor = ServiceSupervisor(
        [
            _RecordingService("routing", log),
            _RecordingService("terminal", log),
            _RecordingService("client", log, fail_start=True),
        ]
    )

    with pytest.raises(BootstrapError, match="client unavailable"):
        await supervisor.start_all()

    assert log == ["start routing", "start terminal", "stop terminal", "stop routing"]


@pytest.mark.asyncio
async def test_service_start_and_stop_are_idempotent():
    log: list[str] = []
    service = _RecordingService("routing", log)

    await service.start()
    await service.start()
    await service.stop()
    await service.stop()

    assert log == ["start routing", "stop routing"]
    assert service.started is False
