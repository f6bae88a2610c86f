import time
from collections import OrderedDict


class ListCacheEntry:
	__slots__ = ('created_at', 'max_age', 'body')

	def __init__(self, created_at:float, max_age:float, body:bytes):
		self.created_at = created_at
		self.max_age = max_age
		self.body = body


class ListCache:
	"""Serialized directory listings keyed by resolved directory path.

	Entries older than `max_age` seconds are dropped when they are looked up,
	there is no background sweeping. The number of entries is bounded by
	`max_entries`, least recently used entries are dropped first.
	Not thread safe, meant to be used from the event loop only.
	"""
	def __init__(self, max_age:float = 10.0, max_entries:int = 4096, clock = time.monotonic):
		self.max_age = max_age
		self.max_entries = max_entries
		self.clock = clock
		self.entries = OrderedDict()

	def __len__(self):
		return len(self.entries)

	def __contains__(self, path):
		return path in self.entries

	def get(self, path:str):
		entry = self.entries.get(path)
		if entry is None:
			return None
		if self.clock() - entry.created_at > entry.max_age:
			del self.entries[path]
			return None
		self.entries.move_to_end(path)
		return entry.body

	def set(self, path:str, body:bytes):
		self.entries[path] = ListCacheEntry(self.clock(), self.max_age, body)
		self.entries.move_to_end(path)
		if self.max_entries is not None:
			while len(self.entries) > self.max_entries:
				self.entries.popitem(last=False)

	def clear(self):
		self.entries.clear()
