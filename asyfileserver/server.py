import ssl
import asyncio
import logging
from typing import Awaitable, Callable

import h11

from asyfileserver.common.exceptions import TransportError
from asyfileserver.network.connection import StreamConnection
from asyfileserver.protocol.http import HTTPConnectionWrapper, HTTPRequest, HTTPResponse

logger = logging.getLogger('asyfileserver.server')

TLS_HANDSHAKE_RECORD = 0x16

RequestHandler = Callable[[HTTPRequest, HTTPResponse], Awaitable[None]]


async def redirect_to_https(req:HTTPRequest, res:HTTPResponse):
	"""Answers plaintext requests arriving on the TLS port"""
	host = req.headers.get('host', '')
	await res.write_head(308, {
		'Location' : 'https://%s%s' % (host, req.target),
		'Content-Length' : 0,
	})
	await res.end()


class FileServer:
	"""Accepts TCP connections and runs the HTTP/1.1 exchange on each of them.

	With an ssl_ctx TLS and plaintext share the listening port: the first byte
	of a connection decides, plaintext requests get redirected to https.
	"""
	def __init__(self, handler:RequestHandler, host:str = 'localhost', port:int = 0, ssl_ctx:ssl.SSLContext = None, buffer_size:int = 65536):
		self.handler = handler
		self.host = host
		self.port = port
		self.ssl_ctx = ssl_ctx
		self.buffer_size = buffer_size
		self.server:asyncio.AbstractServer = None
		self.clients = {}
		self.started_evt = asyncio.Event()

	async def __aenter__(self):
		await self.start()
		return self

	async def __aexit__(self, exc_type, exc, tb):
		await self.terminate()

	@property
	def sockets(self):
		if self.server is None:
			return []
		return self.server.sockets

	def get_address(self):
		"""(host, port) of the first listening socket"""
		sockname = self.sockets[0].getsockname()
		return sockname[0], sockname[1]

	def get_url(self):
		host, port = self.get_address()
		if ':' in host:
			host = '[%s]' % host
		return '%s://%s:%s' % ('https' if self.ssl_ctx is not None else 'http', host, port)

	async def start(self):
		self.server = await asyncio.start_server(self.handle_client, self.host, self.port)
		self.started_evt.set()
		logger.debug('Listening on %s' % self.get_url())

	async def serve(self):
		if self.server is None:
			await self.start()
		async with self.server:
			await self.server.serve_forever()

	async def terminate(self):
		if self.server is not None:
			self.server.close()
		tasks = list(self.clients.keys())
		for connection in list(self.clients.values()):
			await connection.close()
		self.clients = {}
		if len(tasks) > 0:
			# idle connections see EOF and finish on their own
			done, pending = await asyncio.wait(tasks, timeout=1)
			for task in pending:
				task.cancel()
			await asyncio.gather(*pending, return_exceptions=True)
		if self.server is not None:
			# waits for the accepted connections as well on newer pythons
			await self.server.wait_closed()

	async def handle_client(self, reader:asyncio.StreamReader, writer:asyncio.StreamWriter):
		connection = StreamConnection(reader, writer)
		connection.packetizer.set_buffersize(self.buffer_size)
		task = asyncio.current_task()
		self.clients[task] = connection
		try:
			handler = self.handler
			if self.ssl_ctx is not None:
				data = await reader.read(self.buffer_size)
				if data == b'':
					return
				connection.initial_data = data
				if data[0] == TLS_HANDSHAKE_RECORD:
					await connection.wrap_ssl(self.ssl_ctx)
				else:
					handler = redirect_to_https
			await self.handle_connection(connection, handler)
		except (ConnectionError, ssl.SSLError) as e:
			logger.debug('Connection from %s failed: %s' % (connection.get_peer_address()[0], e))
		except asyncio.CancelledError:
			raise
		except Exception:
			logger.exception('Unexpected error serving %s' % (connection.get_peer_address()[0],))
		finally:
			self.clients.pop(task, None)
			await connection.close()

	async def handle_connection(self, connection:StreamConnection, handler:RequestHandler):
		wrapper = HTTPConnectionWrapper(connection)
		logger.debug('[%s] New client connected from %s' % (wrapper.client_id, connection.get_peer_address()[0]))
		while True:
			states = wrapper.conn.states
			if states == {h11.CLIENT: h11.DONE, h11.SERVER: h11.DONE}:
				wrapper.conn.start_next_cycle()
				continue
			if states != {h11.CLIENT: h11.IDLE, h11.SERVER: h11.IDLE}:
				# MUST_CLOSE, CLOSED, ERROR or a response that was given up
				logger.debug('[%s] Closing connection in state %s' % (wrapper.client_id, states))
				break

			try:
				event = await wrapper.next_event()
			except h11.RemoteProtocolError as e:
				await self.send_protocol_error(wrapper, e)
				break

			if type(event) is h11.Request:
				req = HTTPRequest(wrapper, event, secure=connection.secure)
				res = HTTPResponse(wrapper, req.method)
				try:
					await handler(req, res)
				except TransportError as e:
					logger.debug('[%s] %s' % (wrapper.client_id, e))
					break
				continue
			if type(event) is h11.ConnectionClosed:
				break
			logger.debug('[%s] Unexpected event %s' % (wrapper.client_id, type(event).__name__))
			break

	async def send_protocol_error(self, wrapper:HTTPConnectionWrapper, exc:h11.RemoteProtocolError):
		logger.debug('[%s] Malformed request: %s' % (wrapper.client_id, exc))
		if wrapper.conn.our_state not in (h11.IDLE, h11.SEND_RESPONSE):
			return
		status_code = exc.error_status_hint
		body = ('%s %s' % (status_code, exc)).encode('utf-8')
		headers = wrapper.basic_headers() + [
			('Content-Type', 'text/plain; charset=utf-8'),
			('Content-Length', str(len(body))),
			('Connection', 'close'),
		]
		try:
			await wrapper.send(h11.Response(status_code=status_code, headers=headers))
			await wrapper.send(h11.Data(data=body))
			await wrapper.send(h11.EndOfMessage())
		except (ConnectionError, h11.LocalProtocolError) as e:
			logger.debug('[%s] Sending error response failed: %s' % (wrapper.client_id, e))
