"""Test doubles and CSV builders shared by the test modules."""
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from app.services.import_events import ImportEventPublisher

HEADER = ["Department Code", "Department Name", "Hospital ID", "Description", "Is Active"]


class FakeClock:
    """Controllable replacement for utcnow."""

    def __init__(self, now: datetime = datetime(2024, 3, 1, 9, 0, 0)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InlineExecutor:
    """Runs the job synchronously inside import_data."""

    def __init__(self):
        self.submitted: List[str] = []

    def submit(self, pipeline, job_id, options):
        self.submitted.append(job_id)
        pipeline.execute_job(job_id, options)


class DeferredExecutor:
    """Records submissions without running them."""

    def __init__(self):
        self.submitted = []

    def submit(self, pipeline, job_id, options):
        self.submitted.append((job_id, options))


class RecordingPublisher(ImportEventPublisher):
    def __init__(self):
        super().__init__()
        self.events = []

    def publish(self, event_type, payload):
        self.events.append((event_type, dict(payload)))


class FakeRedis:
    """In-process stand-in for the redis client calls the session store makes."""

    def __init__(self):
        self.values = {}
        self.expiry = {}

    def set(self, key, value, ex=None, nx=False):
        if nx and key in self.values:
            return None
        self.values[key] = value
        self.expiry[key] = ex
        return True

    def get(self, key):
        return self.values.get(key)

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed


def department_rows(count: int, start: int = 1, hospital_id: str = "1") -> List[List[str]]:
    return [
        [f"DEPT-{i:04d}", f"Department {i}", hospital_id, f"Ward number {i}", "true"]
        for i in range(start, start + count)
    ]


def make_csv(rows: Sequence[Sequence[Optional[str]]], header: Sequence[str] = HEADER) -> bytes:
    lines = [",".join(header)]
    lines.extend(",".join("" if value is None else value for value in row) for row in rows)
    return ("\n".join(lines) + "\n").encode("utf-8")
