import threading
import time

import pytest

from dblock.common.context import Context
from dblock.errors import Cancelled, CancellationError, DeadlineExceeded


def test_background_never_done():
    ctx = Context.background()
    assert ctx.deadline is None
    assert ctx.remaining() is None
    assert ctx.err() is None
    assert ctx.wait(0.01) is False


def test_deadline_exceeded():
    ctx = Context.background().with_timeout(0.02)
    assert ctx.wait(1.0) is True
    assert isinstance(ctx.err(), DeadlineExceeded)
    with pytest.raises(CancellationError):
        ctx.raise_if_done()


def test_child_keeps_earlier_parent_deadline():
    parent = Context.background().with_timeout(0.05)
    child = parent.with_timeout(10)
    assert child.deadline == parent.deadline

    sooner = parent.with_timeout(0.01)
    assert sooner.deadline < parent.deadline


def test_cancel_wakes_waiter():
    ctx = Context.background()
    timer = threading.Timer(0.05, ctx.cancel)
    timer.start()
    start = time.monotonic()
    try:
        assert ctx.wait(5.0) is True
    finally:
        timer.cancel()
    assert time.monotonic() - start < 2.0
    assert isinstance(ctx.err(), Cancelled)


def test_cancel_propagates_to_children():
    parent = Context.background()
    child = parent.with_timeout(10)
    parent.cancel()
    assert isinstance(child.err(), Cancelled)

    # a child created after the cancellation starts out cancelled
    late = parent.with_timeout(10)
    assert late.done()


def test_closed_child_is_detached():
    parent = Context.background()
    with parent.with_timeout(10) as child:
        pass
    parent.cancel()
    assert child.err() is None
