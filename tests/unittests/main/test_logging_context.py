import asyncio
import json
import logging

from locallift.main.config import get_loglevel
from locallift.main.logging import ContextJSONFormatter, quiet_third_party_loggers
from locallift.main.request_context import (
    clear_request_context,
    get_request_context,
    request_context,
    set_request_context,
)


def make_record(message="Item failed", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="locallift.batches.executor",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_merges_context_and_extra():
    with request_context(batch_id="b-1", workload="rank_checks", tenant_id="tenant-a"):
        line = ContextJSONFormatter().format(make_record(error_code="transient", label=None))

    log = json.loads(line)
    assert log["message"] == "Item failed"
    assert log["level"] == "warning"
    assert log["batch_id"] == "b-1"
    assert log["workload"] == "rank_checks"
    assert log["tenant_id"] == "tenant-a"
    assert log["error_code"] == "transient"
    assert "label" not in log


def test_formatter_leaves_out_record_internals():
    log = json.loads(ContextJSONFormatter().format(make_record(item_id="i-1")))

    assert list(log)[:4] == ["timestamp", "level", "logger", "message"]
    assert log["item_id"] == "i-1"
    for internal in ("msg", "args", "lineno", "pathname", "exc_info"):
        assert internal not in log


def test_extra_does_not_override_batch_context():
    with request_context(tenant_id="tenant-a"):
        log = json.loads(ContextJSONFormatter().format(make_record(tenant_id="tenant-b")))

    assert log["tenant_id"] == "tenant-a"


def test_quiet_third_party_loggers():
    logging.getLogger("somelib.client")

    quiet_third_party_loggers(logging.INFO)
    assert logging.getLogger("somelib.client").level == logging.CRITICAL
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    quiet_third_party_loggers(logging.DEBUG)
    assert logging.getLogger("somelib.client").level == logging.INFO
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    assert not logging.getLogger("sqlalchemy.engine").propagate

    quiet_third_party_loggers(get_loglevel())


def test_context_is_restored_on_exit():
    set_request_context(workload="post_publishing")

    with request_context(tenant_id="tenant-a"):
        assert get_request_context() == {"workload": "post_publishing", "tenant_id": "tenant-a"}

    assert get_request_context() == {"workload": "post_publishing"}
    clear_request_context()
    assert get_request_context() == {}


def test_set_none_removes_key():
    set_request_context(batch_id="b-1", tenant_id="tenant-a")
    set_request_context(tenant_id=None)

    assert get_request_context() == {"batch_id": "b-1"}
    clear_request_context()


async def test_concurrent_tasks_keep_separate_context():
    seen = {}

    async def run(tenant_id):
        with request_context(tenant_id=tenant_id):
            await asyncio.sleep(0)
            seen[tenant_id] = get_request_context()["tenant_id"]

    await asyncio.gather(run("tenant-a"), run("tenant-b"))

    assert seen == {"tenant-a": "tenant-a", "tenant-b": "tenant-b"}
