import asyncio
from concurrent.futures import Future
from pathlib import Path

from watchdog.events import PatternMatchingEventHandler
from watchdog.observers import Observer

from vault.commons.logger import logger


def log_failed_future(fut: Future) -> None:
    """Done-callback for work scheduled from the observer thread."""
    if fut.cancelled():
        return
    ex = fut.exception()
    if ex is not None:
        logger.opt(exception=ex).error(f"Inbox handler failed: {type(ex).__name__}: {ex}")


class FileWatcher:
    """
    Hands the path of every new file in `inbox` matching `glob` to
    `on_path_async(path)` on `loop`. Reading, decoding and moving the file
    is left to the callback.
    """

    def __init__(self, inbox: str, glob: str, on_path_async, loop: asyncio.AbstractEventLoop):
        self.inbox = Path(inbox)
        self.inbox.mkdir(parents=True, exist_ok=True)
        self.loop = loop
        self.on_path_async = on_path_async
        self.handler = PatternMatchingEventHandler(patterns=[glob], ignore_directories=True)
        self.handler.on_created = lambda e: self.submit(Path(e.src_path))
        self.handler.on_modified = lambda e: self.submit(Path(e.src_path))
        self.handler.on_moved = lambda e: self.submit(Path(e.dest_path))
        self.observer = Observer()

    def submit(self, path: Path) -> None:
        # already moved to archive/error by an earlier event
        if not path.exists():
            return
        fut = asyncio.run_coroutine_threadsafe(self.on_path_async(str(path)), self.loop)
        fut.add_done_callback(log_failed_future)

    def start(self):
        self.observer.schedule(self.handler, str(self.inbox), recursive=False)
        self.observer.start()
        logger.debug(f"Observer started on {self.inbox}")

    def stop(self):
        self.observer.stop()
        self.observer.join()
