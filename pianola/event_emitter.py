import asyncio
import logging
import typing


logger = logging.getLogger(__name__)

CallbackType = typing.Callable[..., typing.Any]


class EventEmitter:

	"""
	Named notifications for renderers and other observers.

	A failing listener is logged and skipped; it never interrupts the
	component that emitted the event.
	"""

	def __init__ (self) -> None:

		self._listeners: typing.Dict[str, typing.List[CallbackType]] = {}
		self._pending: typing.Set[asyncio.Task] = set()


	def on (self, event_name: str, callback: CallbackType) -> None:

		"""
		Register a callback for an event name.
		"""

		self._listeners.setdefault(event_name, []).append(callback)

	def off (self, event_name: str, callback: CallbackType) -> None:

		"""
		Unregister a previously registered callback.

		Raises ``ValueError`` if the callback is not registered for the event.
		"""

		if callback not in self._listeners.get(event_name, []):
			raise ValueError(f"Callback not registered for event {event_name!r}")

		self._listeners[event_name].remove(callback)

	def listener_count (self, event_name: str) -> int:

		return len(self._listeners.get(event_name, []))


	def emit_sync (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""
		Call listeners immediately.

		Async listeners are scheduled as tasks on the running loop; without a
		running loop they are skipped with a warning.
		"""

		for callback in list(self._listeners.get(event_name, [])):

			try:
				if asyncio.iscoroutinefunction(callback):
					self._schedule(event_name, callback(*args, **kwargs))
				else:
					callback(*args, **kwargs)

			except Exception:
				logger.exception(f"Listener for {event_name!r} failed")


	async def emit_async (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""
		Call listeners and await the async ones.
		"""

		tasks: typing.List[typing.Awaitable[typing.Any]] = []

		for callback in list(self._listeners.get(event_name, [])):

			try:
				if asyncio.iscoroutinefunction(callback):
					tasks.append(callback(*args, **kwargs))
				else:
					callback(*args, **kwargs)

			except Exception:
				logger.exception(f"Listener for {event_name!r} failed")

		if not tasks:
			return

		results = await asyncio.gather(*tasks, return_exceptions=True)

		for result in results:
			if isinstance(result, Exception):
				logger.error(f"Async listener for {event_name!r} failed: {result!r}")


	def _schedule (self, event_name: str, coroutine: typing.Coroutine[typing.Any, typing.Any, typing.Any]) -> None:

		try:
			task = asyncio.get_running_loop().create_task(coroutine)

		except RuntimeError:
			coroutine.close()
			logger.warning(f"No running event loop for async listener of {event_name!r}")
			return

		self._pending.add(task)
		task.add_done_callback(lambda done: self._finished(event_name, done))

	def _finished (self, event_name: str, task: asyncio.Task) -> None:

		self._pending.discard(task)

		if not task.cancelled() and task.exception() is not None:
			logger.error(f"Async listener for {event_name!r} failed: {task.exception()!r}")
