import http


class HTTPError(Exception):
	"""Raised by request handlers to end a request with a given status code.

	Messages of errors with status >= 500 are never sent to the client,
	`expose=False` hides the message of a client error as well.
	"""
	def __init__(self, status:int, message:str = None, expose:bool = None, headers:dict = None):
		self.status = status
		if message is None:
			try:
				message = http.HTTPStatus(status).phrase
			except ValueError:
				message = 'Error'
		self.message = message
		self.expose = expose if expose is not None else status < 500
		self.headers = headers if headers is not None else {}
		super().__init__(self.message)

	def __repr__(self):
		return 'HTTPError(%s, %r)' % (self.status, self.message)


class PrematureCloseError(ConnectionError):
	"""The peer went away before a message body was fully transferred."""
	pass


class TransportError(Exception):
	"""The request can not be answered, the connection must be torn down."""
	pass


class ConfigError(Exception):
	def __init__(self, problems):
		if isinstance(problems, str):
			problems = [problems]
		self.problems = list(problems)
		super().__init__('Invalid configuration: %s' % '; '.join(self.problems))
