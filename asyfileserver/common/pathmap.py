import json
import logging

logger = logging.getLogger('asyfileserver.pathmap')


def _format(path:str):
	if not path.startswith('/'):
		return '/' + path
	return path


class PathMap:
	"""Static request path aliases, loaded once at startup."""
	def __init__(self, mapping = None):
		self.mapping = {}
		if mapping is not None:
			for src, dst in mapping.items():
				self.mapping[_format(src)] = _format(dst)

	def __contains__(self, path):
		return path in self.mapping

	def __len__(self):
		return len(self.mapping)

	def get(self, path:str, default = None):
		return self.mapping.get(path, default)

	@staticmethod
	def from_list(entries):
		"""Builds the map from a flat list of [src, dst, src, dst, ...]"""
		pm = PathMap()
		for i in range(0, len(entries) - 1, 2):
			pm.mapping[_format(str(entries[i]))] = _format(str(entries[i + 1]))
		return pm

	@staticmethod
	def from_file(filename:str):
		try:
			with open(filename, 'r', encoding='utf-8') as f:
				entries = json.load(f)
		except FileNotFoundError:
			return PathMap()
		except (OSError, ValueError) as e:
			logger.error('Reading path map %s failed: %s' % (filename, e))
			return PathMap()

		if not isinstance(entries, list):
			logger.error('Path map %s must hold a JSON array' % filename)
			return PathMap()
		return PathMap.from_list(entries)
