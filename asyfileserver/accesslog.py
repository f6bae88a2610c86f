import os
import logging
import datetime
import traceback

from asyfileserver.protocol.app import Context
from asyfileserver.protocol.http import HTTPRequest

access_logger = logging.getLogger('asyfileserver.access')
error_logger = logging.getLogger('asyfileserver.error')
critical_logger = logging.getLogger('asyfileserver.critical')


class AccessLog:
	"""Writes one line per served request plus error reports.

	Everything goes through the package loggers, with log_path set the
	entries are also appended to access.log, error.log and critical.log
	in that directory.
	"""
	def __init__(self, log_path:str = None):
		self.log_path = log_path
		self.handlers = []
		if self.log_path is not None:
			os.makedirs(self.log_path, exist_ok=True)
			self.add_file(access_logger, 'access.log')
			self.add_file(error_logger, 'error.log')
			self.add_file(critical_logger, 'critical.log')

	def add_file(self, logger:logging.Logger, filename:str):
		handler = logging.FileHandler(os.path.join(self.log_path, filename), encoding='utf-8')
		handler.setFormatter(logging.Formatter('%(message)s'))
		logger.addHandler(handler)
		self.handlers.append((logger, handler))

	def close(self):
		for logger, handler in self.handlers:
			logger.removeHandler(handler)
			handler.close()
		self.handlers = []

	async def access_middleware(self, ctx:Context, next):
		try:
			await next()
		finally:
			self.access(ctx)

	def access(self, ctx:Context):
		access_logger.info(' - '.join([
			datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
			'%s %s %s' % (ctx.ip, ctx.req.method, ctx.req.target),
			str(ctx.res.status_code),
		]))

	def error(self, exc:Exception, req:HTTPRequest = None):
		entry = []
		if req is not None:
			entry.append('%s %s' % (req.method, req.target))
			entry.append(repr(req.headers))
		entry.append(''.join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip())
		error_logger.error('\n'.join(entry) + '\n')

	def critical(self, msg:str):
		critical_logger.critical(msg)
