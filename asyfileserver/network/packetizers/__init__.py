
class Packetizer:
	"""Pass-through packetizer, data is forwarded as it is read or written."""
	def __init__(self, buffer_size = 65536):
		self.buffer_size = buffer_size

	def set_buffersize(self, buffer_size:int):
		self.buffer_size = buffer_size

	async def data_out(self, data):
		yield data

	async def data_in(self, data):
		if data:
			yield data
