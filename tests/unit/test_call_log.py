from agentflow.services.call_log import CallLog


def test_newest_first_and_capped():
    log = CallLog(capacity=10)
    for i in range(12):
        log.record({"n": i})

    entries = log.to_list()
    assert len(entries) == 10
    assert entries[0] == {"n": 11}
    assert entries[-1] == {"n": 2}


def test_loads_existing_entries_in_order():
    existing = [{"n": 3}, {"n": 2}, {"n": 1}]
    log = CallLog(existing, capacity=10)
    log.record({"n": 4})
    assert [e["n"] for e in log.to_list()] == [4, 3, 2, 1]


def test_existing_entries_over_capacity_keep_newest():
    existing = [{"n": i} for i in range(15, 0, -1)]
    log = CallLog(existing, capacity=10)
    assert len(log) == 10
    assert log.to_list()[0] == {"n": 15}
    assert log.to_list()[-1] == {"n": 6}
