import os
import re
import stat
import json
import errno
import asyncio
import logging
import posixpath
from urllib.parse import quote

from asyfileserver.common.exceptions import HTTPError
from asyfileserver.common.listcache import ListCache
from asyfileserver.common.mime import MimeTable, DEFAULT_TYPE
from asyfileserver.common.pathmap import PathMap
from asyfileserver.common.router import Router, Terminal, REJECT, join_root
from asyfileserver.protocol.app import Context

logger = logging.getLogger('asyfileserver.serve')

DEFAULT_CACHE_CONTROL = 'private, max-age=864000' # 10 days
INTERNAL_CACHE_CONTROL = 'no-cache'
INTERNAL_CSP = "default-src 'self'; img-src * data: blob:; media-src * blob:; worker-src 'self' blob:; object-src 'none'"
LIB_PREFIX = '/_lib_/'
CHUNK_SIZE = 64 * 1024
NOT_FOUND_ERRNOS = (errno.ENOENT, errno.ENAMETOOLONG)
LIST_NOT_FOUND_ERRNOS = (errno.ENOENT, errno.ENOTDIR, errno.ENAMETOOLONG)

FS_ILLEGAL_CHARS = re.compile(r'[<>:"|?*]')
HAS_EXTENSION = re.compile(r'\.[^\\/]+$')
RANGE_INT = re.compile(r'^\s*([+-]?\d+)')


def etag(st:os.stat_result) -> str:
	return '"%x-%x"' % (st.st_mtime_ns // 1000000, st.st_size)

def _parse_int(value:str):
	m = RANGE_INT.match(value)
	if m is None:
		return None
	return int(m.group(1))

def parse_range(header:str, size:int):
	"""Parses a `bytes=<start>-<end>` header, returns (start, end) inclusive or None if unsatisfiable.

	A missing end means end of file, a missing start turns the end into a
	suffix length: start = size - end - 1, end = size - 1.
	The range must satisfy -1 < start < end < size.
	"""
	if header.startswith('bytes='):
		header = header[len('bytes='):]
	parts = header.split('-')
	start = _parse_int(parts[0])
	end = _parse_int(parts[1]) if len(parts) > 1 else None
	if end is None:
		end = size - 1
	elif start is None:
		start = size - end - 1
		end = size - 1
	if start is None:
		return None
	if not (-1 < start < end < size):
		return None
	return start, end

def fs_sanitize(pathname:str):
	if '\x00' in pathname:
		return REJECT
	return FS_ILLEGAL_CHARS.sub('-', pathname)

def filter_hidden(name:str):
	if posixpath.basename(name.rstrip('/')).startswith('.'):
		return REJECT
	return name

def index_suffix(pathname:str):
	if pathname.endswith('/'):
		return pathname + 'index.html'
	return pathname

def dir_suffix(pathname:str):
	if pathname.endswith('/'):
		return pathname
	return pathname + '/'

def _is_within(path:str, root:str):
	try:
		return os.path.commonpath([path, root]) == root
	except ValueError:
		return False

async def fs_stat(path:str):
	loop = asyncio.get_running_loop()
	return await loop.run_in_executor(None, os.stat, path)


class Serve:
	"""Serves one mounted folder: static files, JSON folder listings and PUT uploads.

	Routing of request paths to filesystem paths goes through
	`pathname_router`, response header overrides through `headers_router`.
	"""
	implemented_methods = ['GET', 'PUT', 'HEAD']

	def __init__(self, mime_table:MimeTable = None, path_map:PathMap = None, list_cache:ListCache = None, www_dir:str = None):
		self.mime_table = mime_table if mime_table is not None else MimeTable()
		self.path_map = path_map if path_map is not None else PathMap()
		self.list_cache = list_cache if list_cache is not None else ListCache()
		self.roots = []
		self.www_dir = None
		self.index_page = None
		self.lib_dir = None

		self.pathname_router = Router({
			'map' : [self.alias],
			'filter' : [filter_hidden],
			'fs-sanitize' : [fs_sanitize],
			'file' : [index_suffix],
			'dir' : [dir_suffix],
		})
		self.headers_router = Router({
			'cacheControl' : [self.internal_cache_control, lambda filepath: DEFAULT_CACHE_CONTROL],
			'CSP' : [self.internal_csp, lambda filepath: ''],
		})

		if www_dir is not None:
			self.www_dir = os.path.abspath(www_dir)
			self.index_page = os.path.join(self.www_dir, 'index.html')
			self.lib_dir = os.path.join(self.www_dir, 'lib')
			self.pathname_router.append('file', self.internal_index)
			self.pathname_router.append('file', self.internal_lib)

	def __iter__(self):
		return iter(self.middlewares())

	def middlewares(self):
		return [self.check_method, self.dispatch_api, self.serve_static]

	def mount(self, directory:str):
		directory = os.path.abspath(directory)
		self.roots.append(directory)
		self.pathname_router.append('file', join_root(directory))
		self.pathname_router.append('dir', join_root(directory))
		return self

	## pathname transforms

	def alias(self, pathname:str):
		return self.path_map.get(pathname, pathname)

	def internal_index(self, pathname:str):
		if re.search(r'/index\.html?$', pathname):
			return Terminal(self.index_page)
		return pathname

	def internal_lib(self, pathname:str):
		if pathname.startswith(LIB_PREFIX):
			return Terminal(join_root(self.lib_dir)(pathname[len(LIB_PREFIX):]))
		return pathname

	## header transforms

	def is_internal(self, filepath:str):
		return self.www_dir is not None and _is_within(filepath, self.www_dir)

	def internal_cache_control(self, filepath:str):
		if self.is_internal(filepath):
			return Terminal(INTERNAL_CACHE_CONTROL)
		return filepath

	def internal_csp(self, filepath:str):
		if self.index_page is not None and filepath == self.index_page:
			return Terminal(INTERNAL_CSP)
		return filepath

	## middlewares

	async def check_method(self, ctx:Context, next):
		if ctx.req.method not in self.implemented_methods:
			ctx.throw(501)
		return await next()

	async def dispatch_api(self, ctx:Context, next):
		if ctx.state.pathname != '/api':
			return await next()
		action = ctx.state.query.get('action')
		if action in ('list', 'get-list'):
			return await self.get_list(ctx)
		if action == 'upload':
			return await self.upload_file(ctx)
		ctx.throw(400, 'Unknown action %s' % action if action else 'Action required.')

	async def serve_static(self, ctx:Context, next):
		return await self.serve_file(ctx)

	## listing

	def read_list(self, dirpath:str, dir_to_list:str):
		"""Blocking, runs in the executor"""
		result = []
		with os.scandir(dirpath) as it:
			for entry in it:
				if self.pathname_router.route(entry.name, 'filter') is None:
					continue
				value = posixpath.join(dir_to_list, entry.name)
				if entry.is_file():
					result.append({'type' : 'file', 'value' : value})
				elif entry.is_dir():
					result.append({'type' : 'folder', 'value' : value + '/'})
		result.sort(key = lambda x: x['value'])
		return result

	async def get_list(self, ctx:Context):
		if ctx.req.method != 'GET':
			ctx.throw(405, 'Expected Method GET')

		q = ctx.state.query
		dir_to_list = q.get('l') or q.get('list') or q.get('p')
		if not dir_to_list:
			ctx.throw(400, 'Folder path required.')

		dirpath = self.pathname_router.route(dir_to_list, 'map', 'fs-sanitize', 'dir')
		if dirpath is None:
			ctx.throw(404, 'Not Found')

		body = self.list_cache.get(dirpath)
		if body is None:
			loop = asyncio.get_running_loop()
			try:
				entries = await loop.run_in_executor(None, self.read_list, dirpath, dir_to_list)
			except OSError as e:
				if e.errno in LIST_NOT_FOUND_ERRNOS:
					raise HTTPError(404, 'Not Found') from e
				raise HTTPError(500, str(e)) from e
			body = json.dumps(entries).encode('utf-8')
			self.list_cache.set(dirpath, body)
			logger.info('Serving files list of %s to %s succeeded' % (dir_to_list, ctx.ip))

		await ctx.res.write_head(200, {
			'Content-Type' : 'application/json',
			'Content-Length' : len(body),
		})
		await ctx.res.end(body)

	## upload

	async def upload_file(self, ctx:Context):
		if ctx.req.method != 'PUT':
			ctx.throw(405, 'Expected Method PUT')

		q = ctx.state.query
		upload_target = q.get('p') or q.get('path')
		if not upload_target:
			ctx.throw(400, 'Destination path required.')

		normalized = posixpath.normpath(upload_target)
		if normalized.count('/') + normalized.count('\\') > 1:
			ctx.throw(403, 'You DO NOT have the permission to create folders')

		destination = upload_target
		content_type = ctx.req.headers.get('content-type')
		if not HAS_EXTENSION.search(destination) and content_type:
			ext = self.mime_table.extension_for(content_type)
			if ext is not None:
				destination += ext

		filepath = self.pathname_router.route(destination, 'fs-sanitize', 'file')
		if filepath is None or not any(_is_within(filepath, root) for root in self.roots):
			ctx.throw(403, 'Forbidden')

		try:
			parent_st = await fs_stat(os.path.dirname(filepath))
		except OSError:
			parent_st = None
		if parent_st is None or not stat.S_ISDIR(parent_st.st_mode):
			ctx.throw(403, 'You DO NOT have the permission to create folders')

		exists = True
		try:
			st = await fs_stat(filepath)
		except FileNotFoundError:
			exists = False
		except OSError as e:
			raise HTTPError(500, str(e)) from e
		if exists is True and not stat.S_ISREG(st.st_mode):
			ctx.throw(403, 'A directory entry already exists.')

		loop = asyncio.get_running_loop()
		try:
			f = await loop.run_in_executor(None, open, filepath, 'wb')
		except OSError as e:
			raise HTTPError(500, str(e)) from e

		try:
			await ctx.req.continue_()
			message = ('%s %s' % ('Modified' if exists else 'Created', destination)).encode('utf-8')
			await ctx.res.write_head(200 if exists else 201, {
				'Content-Location' : quote(destination),
				'Content-Type' : 'text/plain; charset=utf-8',
				'Content-Length' : len(message),
			})
			await ctx.res.end(message)

			size = 0
			async for chunk in ctx.req.body():
				try:
					await loop.run_in_executor(None, f.write, chunk)
				except OSError as e:
					raise HTTPError(500, str(e)) from e
				size += len(chunk)
		finally:
			f.close()
		logger.info('%s %s (%s bytes) for %s succeeded' % ('Modifying' if exists else 'Creating', filepath, size, ctx.ip))

	## files

	async def serve_file(self, ctx:Context):
		q = ctx.state.query
		is_download = q.get('d') or q.get('download')
		filepath = self.pathname_router.route(ctx.state.pathname, 'map', 'fs-sanitize', 'file')
		if filepath is None:
			ctx.throw(404, 'Not Found')

		try:
			st = await fs_stat(filepath)
		except OSError as e:
			if e.errno in NOT_FOUND_ERRNOS:
				raise HTTPError(404, 'Not Found') from e
			raise HTTPError(500, str(e)) from e
		except ValueError as e:
			raise HTTPError(404, 'Not Found') from e

		if stat.S_ISDIR(st.st_mode):
			ctx.throw(400, 'This is a folder')
		if not stat.S_ISREG(st.st_mode):
			ctx.throw(404, 'Not Found')

		filename = os.path.basename(filepath)
		if filename.startswith('.'):
			ctx.throw(404, 'Not Found')

		ext = os.path.splitext(filename)[1]
		content_type = self.mime_table.content_type(ext)
		if content_type is None:
			content_type = DEFAULT_TYPE
			if ext.lower() != '.txt':
				logger.warning('No mime type for %r, serving %s as %s' % (ext, filename, DEFAULT_TYPE))

		last_modified = st.st_mtime_ns // 1000000
		etag_value = etag(st)
		size = st.st_size

		if_none_match = ctx.req.headers.get('if-none-match')
		req_last_modified = ctx.req.headers.get('last-modified')
		if if_none_match == etag_value or (req_last_modified and _as_number(req_last_modified) > last_modified):
			await ctx.res.write_head(304)
			await ctx.res.end()
			return

		headers = {
			'Content-Type' : '%s; charset=utf8' % content_type,
			'Last-Modified' : str(last_modified),
			'ETag' : etag_value,
			'Accept-Ranges' : 'bytes',
			'Cache-Control' : self.headers_router.route(filepath, 'cacheControl'),
		}
		csp = self.headers_router.route(filepath, 'CSP')
		if csp:
			headers['Content-Security-Policy'] = csp
		if is_download:
			headers['Content-Disposition'] = 'attachment; filename="%s"' % quote(filename, safe="!~*'()")

		if size == 0:
			await ctx.res.write_head(204, headers)
			await ctx.res.end()
			return

		start, end = 0, size - 1
		status_code = 200
		range_header = ctx.req.headers.get('range')
		if range_header:
			byte_range = parse_range(range_header, size)
			if byte_range is None:
				headers['Content-Range'] = 'bytes */%d' % size
				headers['Content-Length'] = '0'
				await ctx.res.write_head(416, headers)
				await ctx.res.end()
				return
			start, end = byte_range
			status_code = 206
			headers['Content-Range'] = 'bytes %d-%d/%d' % (start, end, size)
		headers['Content-Length'] = str(end - start + 1)

		if ctx.req.method == 'HEAD':
			await ctx.res.write_head(status_code, headers)
			await ctx.res.end()
			return

		loop = asyncio.get_running_loop()
		try:
			f = await loop.run_in_executor(None, open, filepath, 'rb')
		except OSError as e:
			raise HTTPError(500, str(e)) from e

		try:
			await ctx.res.write_head(status_code, headers)
			await self.stream_file(ctx, f, start, end)
		finally:
			f.close()
		logger.debug('Serving file %s to %s succeeded' % (filename, ctx.ip))

	async def stream_file(self, ctx:Context, f, start:int, end:int):
		"""Sends bytes [start, end] of the open file f, one chunk at a time"""
		loop = asyncio.get_running_loop()
		remaining = end - start + 1
		try:
			if start > 0:
				await loop.run_in_executor(None, f.seek, start)
			while remaining > 0:
				chunk = await loop.run_in_executor(None, f.read, min(CHUNK_SIZE, remaining))
				if not chunk:
					break
				# waits for the socket buffer to drain
				await ctx.res.write(chunk)
				remaining -= len(chunk)
		except OSError as e:
			if isinstance(e, ConnectionError):
				raise
			raise HTTPError(500, str(e)) from e
		if remaining > 0:
			raise HTTPError(500, 'File shrunk while being served')
		await ctx.res.end()


def _as_number(value:str):
	try:
		return float(value)
	except ValueError:
		return float('nan')
