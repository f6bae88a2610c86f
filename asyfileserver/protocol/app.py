import asyncio
import logging
from typing import Awaitable, Callable, Dict, List
from urllib.parse import urlsplit, unquote, parse_qs

import h11

from asyfileserver.common.exceptions import HTTPError, PrematureCloseError, TransportError
from asyfileserver.protocol.http import HTTPRequest, HTTPResponse

logger = logging.getLogger('asyfileserver.app')


class ContextState:
	def __init__(self, pathname:str, url, query:Dict[str, str]):
		self.pathname = pathname
		self.url = url
		self.query = query


class Context:
	"""Everything a handler needs to know about one request. Never shared between requests."""
	def __init__(self, app, req:HTTPRequest, res:HTTPResponse, url:str, secure:bool, ip:str):
		self.app = app
		self.req = req
		self.res = res
		self.url = url
		self.secure = secure
		self.ip = ip
		parsed = urlsplit(url)
		query = {}
		for k, v in parse_qs(parsed.query, keep_blank_values=True).items():
			query[k] = v[0]
		self.state = ContextState(unquote(parsed.path).replace('+', ' '), parsed, query)

	def throw(self, status:int, message:str = None, expose:bool = None):
		raise HTTPError(status, message, expose=expose)

	def assert_(self, should_be_truthy, status:int, message:str = None):
		if not should_be_truthy:
			self.throw(status, message)


Next = Callable[[], Awaitable[None]]
Middleware = Callable[[Context, Next], Awaitable[None]]


class App:
	"""Chain of request handlers, each may run code before and after the rest of the chain.

	Handlers added with `prepend` run before every handler added with `use`.
	The chain is frozen when the first request comes in.
	"""
	def __init__(self, hostname:str = 'localhost', trust_proxy:bool = False):
		self.hostname = hostname
		self.trust_proxy = trust_proxy
		self.middlewares:List[Middleware] = []
		self.prepended:List[Middleware] = []
		self.error_callbacks = []

	def use(self, middleware:Middleware):
		self.middlewares.append(middleware)
		return self

	def prepend(self, middleware:Middleware):
		self.prepended.insert(0, middleware)
		return self

	def on_error(self, callback):
		"""callback(exc, request) is called for every server side error"""
		self.error_callbacks.append(callback)
		return self

	async def emit_error(self, exc:Exception, req:HTTPRequest = None):
		if len(self.error_callbacks) == 0:
			logger.error('Unhandled error serving %s: %r' % (req.target if req is not None else '-', exc))
			return
		for callback in self.error_callbacks:
			try:
				res = callback(exc, req)
				if asyncio.iscoroutine(res):
					await res
			except Exception:
				logger.exception('error callback failed')

	def build_url(self, req:HTTPRequest):
		secure = req.secure
		if self.trust_proxy is True and req.headers.get('x-forwarded-proto', '').split(',')[0].strip().lower() == 'https':
			secure = True
		host = None
		if self.trust_proxy is True:
			host = req.headers.get('x-forwarded-host', '').split(',')[0].strip()
		if not host:
			host = req.headers.get('host') or self.hostname

		target = req.target
		if target == '*':
			# asterisk-form (OPTIONS *), routed as the pathname /*
			target = '/*'
		if target.startswith('/'):
			url = '%s://%s%s' % ('https' if secure else 'http', host, target)
		else:
			url = req.target
		parsed = urlsplit(url)
		# raises ValueError on malformed netloc or port
		parsed.port
		if parsed.scheme not in ('http', 'https') or not parsed.netloc or not parsed.path.startswith('/'):
			raise ValueError('Invalid request target %r' % req.target)
		return url, secure

	def get_ip(self, req:HTTPRequest):
		if self.trust_proxy is True and req.headers.get('x-forwarded-for'):
			return req.headers['x-forwarded-for'].split(',')[0].strip()
		return req.peer_ip

	def callback(self):
		chain = None

		async def handle(req:HTTPRequest, res:HTTPResponse):
			nonlocal chain
			if chain is None:
				chain = tuple(self.prepended) + (self.error_boundary,) + tuple(self.middlewares)
			await self.handle_request(chain, req, res)

		return handle

	async def handle_request(self, chain, req:HTTPRequest, res:HTTPResponse):
		try:
			url, secure = self.build_url(req)
		except ValueError as e:
			await self.emit_error(e, req)
			raise TransportError('Malformed request URL %r' % req.target) from e

		ctx = Context(self, req, res, url, secure, self.get_ip(req))

		index = 0
		async def next_():
			nonlocal index
			if index >= len(chain):
				return
			middleware = chain[index]
			index += 1
			return await middleware(ctx, next_)

		try:
			await next_()
		except Exception as e:
			await self.handle_error(ctx, e)

		try:
			if res.headers_sent is False:
				await res.write_head(204, {
					'Cache-Control' : 'no-cache',
				})
			if res.finished is False:
				await res.end()
		except (ConnectionError, h11.LocalProtocolError) as e:
			logger.debug('Finishing response failed: %s' % e)
			res.abort()

		if res.aborted is False:
			try:
				await req.drain()
			except (PrematureCloseError, ConnectionError) as e:
				logger.debug('Draining request body failed: %s' % e)
				res.abort()
		return ctx

	async def error_boundary(self, ctx:Context, next):
		"""Turns errors of the handlers added with `use` into responses,
		so the prepended handlers see the final status"""
		try:
			await next()
		except Exception as e:
			await self.handle_error(ctx, e)

	async def handle_error(self, ctx:Context, exc:Exception):
		if isinstance(exc, HTTPError):
			if exc.status >= 500:
				await self.emit_error(exc, ctx.req)
			await self.respond_error(ctx.res, exc)
		elif isinstance(exc, ConnectionError):
			logger.info('Client %s aborted %s %s: %s' % (ctx.ip, ctx.req.method, ctx.req.target, exc))
			ctx.res.abort()
		else:
			await self.emit_error(exc, ctx.req)
			await self.respond_error(ctx.res, HTTPError(500))

	async def respond_error(self, res:HTTPResponse, err:HTTPError):
		if res.headers_sent is True:
			# too late for a proper error response
			if res.finished is False:
				res.abort()
			return
		body = b''
		headers = dict(err.headers)
		if err.expose is True and err.status < 500:
			body = err.message.encode('utf-8')
			headers['Content-Type'] = 'text/plain; charset=utf-8'
		res.status_code = err.status
		res.headers = {k: v for k, v in res.headers.items() if k.lower() != 'content-length'}
		res.headers.update(headers)
		try:
			await res.end(body)
		except (ConnectionError, h11.LocalProtocolError):
			res.abort()
