import threading

from arraypoll.connection.rpc_channel import CorrelationIdAllocator, RpcRequest


def test_ids_are_strings_and_monotonic():
    ids = CorrelationIdAllocator()
    assert [ids.next_id() for _ in range(3)] == ["1", "2", "3"]
    assert CorrelationIdAllocator(start=100).next_id() == "100"


def test_ids_are_unique_across_threads():
    allocator = CorrelationIdAllocator()
    seen = []
    lock = threading.Lock()

    def worker():
        local = [allocator.next_id() for _ in range(500)]
        with lock:
            seen.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(seen) == len(set(seen)) == 4000


def test_request_accepts_wire_names():
    request = RpcRequest.model_validate({
        "pluginId": "sc",
        "correlationId": "5",
        "methodName": "getControllerPorts",
        "methodArguments": ["123"],
        "handlerName": "ControllerService",
    })
    assert request.type == "rpc-call"
    assert request.method_name == "getControllerPorts"
