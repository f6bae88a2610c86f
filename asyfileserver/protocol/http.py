import http
import datetime
import email.utils
import logging
from itertools import count
from typing import Dict, List, Tuple, Union

import h11

from asyfileserver._version import __version__
from asyfileserver.common.exceptions import PrematureCloseError
from asyfileserver.network.connection import StreamConnection

logger = logging.getLogger('asyfileserver.http')

SERVER_IDENT = " ".join(
	["asyfileserver/%s" % __version__, h11.PRODUCT_ID]
).encode("ascii")


def format_date_time(dt=None):
	"""Generate a RFC 7231 / RFC 9110 IMF-fixdate string"""
	if dt is None:
		dt = datetime.datetime.now(datetime.timezone.utc)
	return email.utils.format_datetime(dt, usegmt=True)


class HTTPConnectionWrapper:
	"""Drives one h11 server side state machine over a StreamConnection"""
	_next_id = count()

	def __init__(self, connection:StreamConnection):
		self.connection = connection
		self.conn = h11.Connection(h11.SERVER)
		# A unique id for this connection, to include in debugging output
		self.client_id = next(HTTPConnectionWrapper._next_id)
		# a final response went out while the client still waited for 100 Continue
		self.continue_skipped = False

	async def send(self, event):
		# ConnectionClosed is never sent, closing is handled by the server loop
		assert type(event) is not h11.ConnectionClosed
		if type(event) is h11.Response:
			self.continue_skipped = self.conn.they_are_waiting_for_100_continue
		data = self.conn.send(event)
		try:
			await self.connection.write(data)
		except BaseException:
			# the peer is gone or we got cancelled, either way this
			# connection is not usable anymore
			self.conn.send_failed()
			raise

	async def send_continue(self):
		if self.conn.they_are_waiting_for_100_continue:
			logger.debug('[%s] Sending 100 Continue' % self.client_id)
			go_ahead = h11.InformationalResponse(
				status_code=100, headers=self.basic_headers()
			)
			await self.send(go_ahead)

	async def _read_from_peer(self):
		await self.send_continue()
		try:
			data = await self.connection.read_one()
		except Exception as exc:
			logger.debug('[%s] Error reading from peer: %s' % (self.client_id, exc))
			# They've stopped listening. Not much we can do about it here.
			data = b""
		self.conn.receive_data(data)

	async def next_event(self):
		while True:
			event = self.conn.next_event()
			if event is h11.NEED_DATA:
				await self._read_from_peer()
				continue
			return event

	async def body(self):
		"""Yields the chunks of the current request body"""
		while self.conn.their_state is h11.SEND_BODY:
			try:
				event = await self.next_event()
			except h11.RemoteProtocolError as e:
				raise PrematureCloseError('Request body ended prematurely: %s' % e)
			if type(event) is h11.Data:
				yield bytes(event.data)
			elif type(event) is h11.EndOfMessage:
				return
			else:
				raise PrematureCloseError('Request body ended prematurely: %s' % type(event).__name__)

	async def drain_body(self):
		"""Discards what is left of the request body so the connection can be reused"""
		if self.continue_skipped is True and self.conn.their_state is h11.SEND_BODY:
			# the client may never send the body it was not asked for
			raise PrematureCloseError('Response sent before 100 Continue, body not expected')
		async for _ in self.body():
			pass

	def basic_headers(self):
		# HTTP requires these headers in all responses
		return [
			("Date", format_date_time().encode("ascii")),
			("Server", SERVER_IDENT),
		]


class HTTPRequest:
	def __init__(self, wrapper:HTTPConnectionWrapper, event:h11.Request, secure:bool = False):
		self.wrapper = wrapper
		self.method:str = event.method.decode('ascii').upper()
		self.target:str = event.target.decode('latin-1')
		self.http_version:str = event.http_version.decode('ascii')
		self.secure = secure
		self.headers:Dict[str, str] = {}
		for name, value in event.headers:
			name = name.decode('latin-1').lower()
			value = value.decode('latin-1')
			if name in self.headers:
				self.headers[name] += ', ' + value
			else:
				self.headers[name] = value
		self.peer_ip, self.peer_port = wrapper.connection.get_peer_address()

	def body(self):
		return self.wrapper.body()

	async def continue_(self):
		"""Asks a client waiting on `Expect: 100-continue` to send the body now"""
		await self.wrapper.send_continue()

	async def drain(self):
		await self.wrapper.drain_body()

	def __str__(self):
		t = '%s %s HTTP/%s\r\n' % (self.method, self.target, self.http_version)
		for x in self.headers:
			t += '%s: %s\r\n' % (x, self.headers[x])
		return t


class HTTPResponse:
	"""Response handle given to the request handlers.

	The head is sent by `write_head` (or implicitly by the first `write`),
	`end` finishes the message. Body bytes are silently dropped where HTTP
	forbids a body (HEAD requests, 204 and 304 responses).
	"""
	def __init__(self, wrapper:HTTPConnectionWrapper, request_method:str = 'GET'):
		self.wrapper = wrapper
		self.request_method = request_method
		self.status_code = 200
		self.headers:Dict[str, str] = {}
		self.headers_sent = False
		self.finished = False
		self.aborted = False
		self.bytes_sent = 0

	@property
	def bodyless(self):
		return self.request_method == 'HEAD' or self.status_code in (204, 304) or self.status_code < 200

	def set_header(self, name:str, value):
		if self.headers_sent:
			raise RuntimeError('Headers already sent')
		self.headers[name] = str(value)

	async def write_head(self, status_code:int, headers:Union[Dict[str, str], List[Tuple[str, str]]] = None):
		if self.headers_sent:
			raise RuntimeError('Headers already sent')
		self.status_code = status_code
		if headers is not None:
			if isinstance(headers, dict):
				headers = headers.items()
			for name, value in headers:
				self.headers[name] = str(value)

		hdrs = self.wrapper.basic_headers()
		for name, value in self.headers.items():
			if self.status_code in (204, 304) and name.lower() == 'content-length':
				continue
			hdrs.append((name.encode('latin-1'), value.encode('latin-1')))
		try:
			reason = http.HTTPStatus(status_code).phrase.encode('ascii')
		except ValueError:
			reason = b''
		self.headers_sent = True
		await self.wrapper.send(h11.Response(status_code=status_code, headers=hdrs, reason=reason))

	async def write(self, data:bytes):
		if self.headers_sent is False:
			await self.write_head(self.status_code)
		if self.bodyless or not data:
			return
		await self.wrapper.send(h11.Data(data=data))
		self.bytes_sent += len(data)

	async def end(self, data:Union[bytes, str] = b''):
		if self.finished is True:
			return
		if isinstance(data, str):
			data = data.encode('utf-8')
		if self.headers_sent is False:
			if not any(name.lower() == 'content-length' for name in self.headers):
				self.headers['Content-Length'] = str(len(data))
			await self.write_head(self.status_code)
		await self.write(data)
		self.finished = True
		await self.wrapper.send(h11.EndOfMessage())

	def abort(self):
		"""Gives up on the response, the connection will be closed without finishing it"""
		self.finished = True
		self.aborted = True
		if self.wrapper.conn.our_state is not h11.ERROR:
			self.wrapper.conn.send_failed()
