import ssl
from asyfileserver.network.packetizers import Packetizer

class PacketizerSSL(Packetizer):
	"""TLS on top of another packetizer, driven through memory BIOs."""
	def __init__(self, ssl_ctx, packetizer:Packetizer):
		Packetizer.__init__(self, 16384)
		self.ssl_ctx:ssl.SSLContext = ssl_ctx
		self.packetizer = packetizer
		self.tls_in_buff:ssl.MemoryBIO = None
		self.tls_out_buff:ssl.MemoryBIO = None
		self.tls_obj:ssl.SSLObject = None
		self.closed = False

	def set_buffersize(self, buffer_size:int):
		self.packetizer.set_buffersize(buffer_size)

	async def flush(self, writer):
		while True:
			raw = self.tls_out_buff.read()
			if raw == b'':
				break
			writer.write(raw)
			await writer.drain()

	async def do_handshake(self, reader, writer, server_side=False, initial_data = b''):
		"""Runs the TLS handshake. `initial_data` holds bytes already read from the peer (sniffed ClientHello)"""
		self.tls_in_buff = ssl.MemoryBIO()
		self.tls_out_buff = ssl.MemoryBIO()
		self.tls_obj = self.ssl_ctx.wrap_bio(self.tls_in_buff, self.tls_out_buff, server_side=server_side)
		if initial_data:
			self.tls_in_buff.write(initial_data)

		while True:
			try:
				self.tls_obj.do_handshake()
			except ssl.SSLWantReadError:
				await self.flush(writer)
				data = await reader.read(self.buffer_size)
				if data == b'':
					raise ConnectionResetError('Peer closed the connection during TLS handshake')
				self.tls_in_buff.write(data)
				continue
			else:
				await self.flush(writer)
				break

	async def data_out(self, data:bytes):
		outdata = b''
		async for packetraw in self.packetizer.data_out(data):
			outdata += packetraw
		self.tls_obj.write(outdata)
		while True:
			raw = self.tls_out_buff.read()
			if raw != b'':
				yield raw
				continue
			break

	async def data_in(self, encdata:bytes):
		"""Feeds encrypted bytes (may be empty) and yields whatever plaintext became available"""
		if encdata:
			self.tls_in_buff.write(encdata)
		data = b''
		while True:
			try:
				chunk = self.tls_obj.read(self.buffer_size)
			except ssl.SSLWantReadError:
				break
			except ssl.SSLZeroReturnError:
				self.closed = True
				break
			if chunk == b'':
				self.closed = True
				break
			data += chunk
		if data != b'':
			async for packet in self.packetizer.data_in(data):
				yield packet
