"""Tests for the admission gate."""

from __future__ import annotations

import threading
import time

import pytest

from deeptile.core.gate import AdmissionGate


class TestAdmissionGate:
    def test_peak_never_exceeds_limit(self) -> None:
        gate = AdmissionGate(3)
        errors = []

        def worker() -> None:
            try:
                with gate.permit() as admitted:
                    assert admitted
                    time.sleep(0.01)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert 1 <= gate.peak <= 3
        assert gate.in_flight == 0

    def test_cancel_while_waiting(self) -> None:
        gate = AdmissionGate(1)
        assert gate.acquire()

        cancel = threading.Event()
        timer = threading.Timer(0.1, cancel.set)
        timer.start()
        try:
            assert gate.acquire(cancel) is False
        finally:
            timer.cancel()
        assert gate.in_flight == 1

        gate.release()
        assert gate.in_flight == 0

    def test_cancelled_before_acquire(self) -> None:
        gate = AdmissionGate(2)
        cancel = threading.Event()
        cancel.set()
        with gate.permit(cancel) as admitted:
            assert admitted is False
        assert gate.in_flight == 0

    def test_permit_released_on_exception(self) -> None:
        gate = AdmissionGate(1)
        with pytest.raises(RuntimeError):
            with gate.permit():
                raise RuntimeError("boom")
        assert gate.in_flight == 0
        # The permit is free again
        assert gate.acquire(threading.Event())

    def test_over_release_raises(self) -> None:
        gate = AdmissionGate(2)
        with pytest.raises(ValueError):
            gate.release()

    @pytest.mark.parametrize("limit", [None, 0, -1], ids=["none", "zero", "negative"])
    def test_unbounded(self, limit) -> None:
        gate = AdmissionGate(limit)
        assert gate.limit is None
        for _ in range(50):
            assert gate.acquire()
        assert gate.in_flight == 50
        assert gate.peak == 50
        for _ in range(50):
            gate.release()
        assert gate.in_flight == 0
