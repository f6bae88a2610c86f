import asyncio
import ssl
from asyfileserver.network.packetizers import Packetizer
from asyfileserver.network.packetizers.ssl import PacketizerSSL


class StreamConnection:
	"""A single accepted TCP connection, optionally TLS wrapped."""
	def __init__(self, reader:asyncio.StreamReader, writer:asyncio.StreamWriter, packetizer:Packetizer = None, initial_data:bytes = b''):
		self.reader = reader
		self.writer = writer
		self.packetizer = packetizer if packetizer is not None else Packetizer()
		self.initial_data = initial_data
		self.closing = False
		self.closed_evt = asyncio.Event()
		self.__pending = []

	async def __aenter__(self):
		return self

	async def __aexit__(self, exc_type, exc, tb):
		await self.close()

	@property
	def secure(self):
		return isinstance(self.packetizer, PacketizerSSL)

	def get_extra_info(self, name, default=None):
		return self.writer.get_extra_info(name, default)

	def get_peer_address(self):
		peer = self.get_extra_info('peername')
		if peer is None:
			return None, None
		return peer[0], peer[1]

	async def wrap_ssl(self, ssl_ctx:ssl.SSLContext):
		"""Server side TLS handshake, consumes the sniffed bytes"""
		packetizer = PacketizerSSL(ssl_ctx, self.packetizer)
		initial_data, self.initial_data = self.initial_data, b''
		await packetizer.do_handshake(self.reader, self.writer, server_side=True, initial_data=initial_data)
		self.packetizer = packetizer
		# application data may have arrived together with the last handshake record
		async for packet in self.packetizer.data_in(b''):
			self.__pending.append(packet)

	async def close(self):
		if self.closing is True:
			return
		self.closing = True
		try:
			self.writer.close()
		except Exception:
			pass
		self.closed_evt.set()

	async def write(self, data:bytes):
		if not data:
			return
		async for packet in self.packetizer.data_out(data):
			self.writer.write(packet)
			await self.writer.drain()

	async def read_one(self):
		"""Returns the next chunk of (plaintext) data, b'' when the peer is gone"""
		while True:
			if self.__pending:
				return self.__pending.pop(0)
			if self.closing is True:
				return b''
			if self.initial_data:
				data, self.initial_data = self.initial_data, b''
			else:
				data = await self.reader.read(self.packetizer.buffer_size)
			if data == b'':
				return b''
			async for packet in self.packetizer.data_in(data):
				self.__pending.append(packet)
			if isinstance(self.packetizer, PacketizerSSL) and self.packetizer.closed and not self.__pending:
				return b''
