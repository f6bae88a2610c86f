import os
import posixpath
from typing import Callable, Dict, List, Union


class Terminal:
	"""Routing result that ends the whole pipeline with a fixed value."""
	__slots__ = ('value',)

	def __init__(self, value:str):
		self.value = value

	def __repr__(self):
		return 'Terminal(%r)' % self.value

	def __eq__(self, other):
		return isinstance(other, Terminal) and other.value == self.value


class _Reject:
	__slots__ = ()

	def __bool__(self):
		return False

	def __repr__(self):
		return 'REJECT'

REJECT = _Reject()

RouteResult = Union[str, Terminal, _Reject, bool, None]
Transform = Callable[[str], RouteResult]


def normalize(path:str) -> str:
	"""Normalizes a request path against a virtual root.

	The result always starts with '/' and never contains '..' segments, so it
	can be safely joined to a real directory.
	"""
	path = path.replace('\\', '/').lstrip('/')
	return posixpath.normpath('/' + path)

def join_root(root:str) -> Transform:
	root = os.path.abspath(root)
	def _join(pathname:str) -> str:
		return os.path.join(root, normalize(pathname).lstrip('/'))
	return _join


class Router:
	"""Ordered, named stages of transform functions.

	`route` folds a value through the transforms of the requested stages. A
	transform returns the new value, a `Terminal` to skip everything that is
	left, or `REJECT`/`False`/`None` to veto the routing (route returns None).
	"""
	def __init__(self, stages:Dict[str, List[Transform]] = None):
		self.stages:Dict[str, List[Transform]] = {}
		if stages is not None:
			for name in stages:
				self.stages[name] = list(stages[name])

	def add_stage(self, name:str):
		self.stages.setdefault(name, [])
		return self

	def append(self, stage:str, transform:Transform):
		self.stages.setdefault(stage, []).append(transform)
		return self

	def prepend(self, stage:str, transform:Transform):
		self.stages.setdefault(stage, []).insert(0, transform)
		return self

	def route(self, value:str, *stages:str):
		for stage in stages:
			for transform in self.stages[stage]:
				result = transform(value)
				if result is None or result is False or result is REJECT:
					return None
				if isinstance(result, Terminal):
					return result.value
				value = result
		return value
