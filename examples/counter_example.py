"""
ReactiveStore 範例：計數器，展示同步、延遲完成與被否決的 Action
文件名: counter_example.py
"""

from pathlib import Path
import sys
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
import threading

from reactivestore import (
    Action,
    DevToolsMiddleware,
    DispatchQueue,
    FilterMiddleware,
    LoggerMiddleware,
    Store,
    StoreConfig,
    create_action,
)


# ============== 定義 Store ==============
class CounterStore(Store):
    def __init__(self, *middlewares, config=None):
        super().__init__(*middlewares, config=config)
        self.count = 0
        self.loading = False
        self.log = []


# ============== 定義 Actions ==============
increment = create_action("increment", lambda store, _: setattr(store, "count", store.count + 1),
                          store_type=CounterStore)
increment_by = create_action("incrementBy",
                             lambda store, amount: setattr(store, "count", store.count + amount),
                             store_type=CounterStore)
reset = create_action("reset", lambda store, value: setattr(store, "count", value or 0),
                      store_type=CounterStore)


class LoadCount(Action[CounterStore]):
    """模擬從 API 載入計數：在背景佇列上延遲後才完成"""
    store_type = CounterStore

    def __init__(self, value, api_queue, delay=0.05):
        super().__init__(value, type="loadCount")
        self.api_queue = api_queue
        self.delay = delay

    def execute(self, store, completion):
        store.loading = True
        store.log.append("loadCount started")

        def respond():
            store.count = self.payload
            store.loading = False
            store.log.append("loadCount finished")
            completion()

        self.api_queue.after(self.delay, respond)


def main():
    api_queue = DispatchQueue("api")
    devtools = DevToolsMiddleware()
    store = CounterStore(
        LoggerMiddleware("INFO"),
        FilterMiddleware(blocked_types={"reset"}),
        devtools,
        config=StoreConfig(name="counter", log_level="INFO"),
    )

    idle = threading.Event()
    store.dispatch(LoadCount(42, api_queue))
    # loadCount 尚未完成，以下兩個 Action 會排隊
    store.dispatch(increment())
    store.dispatch(increment_by(5), completion=idle.set)
    print(f"排隊中的 Action 數量: {store.pending_count}")

    idle.wait(5)
    print(f"count = {store.count}")  # 42 + 1 + 5

    # reset 被 FilterMiddleware 否決，但 completion 仍會被呼叫
    vetoed = store.dispatch(reset(0), completion=lambda: print("reset handled"))
    print(f"reset executed: {vetoed.result(1)}, count = {store.count}")

    print("執行歷史:", [action.type for action in devtools.get_history()])
    api_queue.shutdown()
    return store


if __name__ == "__main__":
    main()
