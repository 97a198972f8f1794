import logging

from quizlive.services.sessions.scheduler import BackgroundScheduler, ManualScheduler


class InlineSocketIO:
    """Runs background tasks immediately and records sleeps instead of sleeping."""

    def __init__(self):
        self.slept = []
        self.on_sleep = None

    def start_background_task(self, target, *args):
        target(*args)

    def sleep(self, seconds):
        self.slept.append(seconds)
        if self.on_sleep:
            self.on_sleep()


def test_background_timer_fires_after_delay():
    sio = InlineSocketIO()
    fired = []
    handle = BackgroundScheduler(sio).call_later(30, fired.append, 'q0')
    assert fired == ['q0']
    assert sio.slept == [30]
    assert handle.fired and not handle.active


def test_background_timer_heartbeat_steps(caplog):
    sio = InlineSocketIO()
    logger = logging.getLogger('quizlive.test.scheduler')
    with caplog.at_level(logging.INFO, logger=logger.name):
        BackgroundScheduler(sio, logger=logger, heartbeat_sec=4).call_later(10, lambda: None, label='q=0')
    assert sio.slept == [4, 4, 2]
    assert sum('[timer-heartbeat] q=0' in r.message for r in caplog.records) == 3


def test_cancelled_background_timer_never_fires():
    sio = InlineSocketIO()
    fired = []
    handles = []
    sio.on_sleep = lambda: handles[0].cancel()
    scheduler = BackgroundScheduler(sio, heartbeat_sec=1)
    # Capture the handle before the worker runs so the first sleep can cancel it
    sio.start_background_task = lambda target, *args: handles.append(args[0]) or target(*args)
    scheduler.call_later(5, fired.append, 'late')
    assert fired == []
    assert sio.slept == [1]


def test_failing_callback_is_logged(caplog):
    sio = InlineSocketIO()
    logger = logging.getLogger('quizlive.test.scheduler')

    def boom():
        raise RuntimeError('boom')

    with caplog.at_level(logging.ERROR, logger=logger.name):
        BackgroundScheduler(sio, logger=logger).call_later(1, boom, label='q=1')
    assert any('[timer-error] q=1' in r.message for r in caplog.records)


def test_manual_scheduler_skips_cancelled():
    scheduler = ManualScheduler()
    fired = []
    first = scheduler.call_later(10, fired.append, 1)
    scheduler.call_later(10, fired.append, 2)
    first.cancel()
    assert len(scheduler.armed()) == 1
    assert scheduler.run_until_idle() == 1
    assert fired == [2]
    assert scheduler.fire_next() is None


def test_timer_handle_remaining():
    handle = ManualScheduler().call_later(60, lambda: None)
    assert 59 < handle.remaining() <= 60
    handle.cancel()
    assert not handle.active
