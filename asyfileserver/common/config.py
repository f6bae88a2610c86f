import os
import re
import json
import logging
from typing import List

from asyfileserver.common.exceptions import ConfigError

logger = logging.getLogger('asyfileserver.config')

SELFSIGNED_HOSTNAMES = ['localhost', '127.0.0.1', None]

config_fields = {
	'location' : str,
	'hostname' : str,
	'port' : int,
	'log_path' : str,
	'tls' : bool,
	'self_signed' : bool,
	'cert' : str,
	'key' : str,
	'auth_enabled' : bool,
	'username' : str,
	'password' : str,
	'auth_rules' : list,
	'trust_proxy' : bool,
	'path_map' : str,
}


class FileServerConfig:
	"""Every knob of the file server. Fields depend on each other, see `validate`"""
	def __init__(self, location:str = './', hostname:str = 'localhost', port:int = 12345, log_path:str = None,
			tls:bool = False, self_signed:bool = True, cert:str = None, key:str = None,
			auth_enabled:bool = False, username:str = None, password:str = None, auth_rules:List[str] = None,
			trust_proxy:bool = False, path_map:str = None):
		self.location = location
		self.hostname = hostname
		self.port = port
		self.log_path = log_path
		self.tls = tls
		self.self_signed = self_signed
		self.cert = cert
		self.key = key
		self.auth_enabled = auth_enabled
		self.username = username
		self.password = password
		self.auth_rules:List[str] = auth_rules if auth_rules is not None else []
		self.trust_proxy = trust_proxy
		self.path_map = path_map

	@staticmethod
	def from_dict(d:dict):
		params = {}
		problems = []
		for k in d:
			if k not in config_fields:
				problems.append('Unknown configuration key "%s"' % k)
				continue
			if d[k] is None:
				continue
			if not isinstance(d[k], config_fields[k]) or (config_fields[k] is int and isinstance(d[k], bool)):
				problems.append('"%s" must be of type %s' % (k, config_fields[k].__name__))
				continue
			params[k] = d[k]
		if len(problems) > 0:
			raise ConfigError(problems)
		return FileServerConfig(**params)

	@staticmethod
	def from_file(filename:str):
		try:
			with open(filename, 'r', encoding='utf-8') as f:
				data = json.load(f)
		except (OSError, ValueError) as e:
			raise ConfigError('Reading configuration file %s failed: %s' % (filename, e))
		if not isinstance(data, dict):
			raise ConfigError('Configuration file %s must hold a JSON object' % filename)
		return FileServerConfig.from_dict(data)

	def to_dict(self):
		return {k: getattr(self, k) for k in config_fields}

	def update(self, **kwargs):
		for k in kwargs:
			if k not in config_fields:
				raise ConfigError('Unknown configuration key "%s"' % k)
			if kwargs[k] is not None:
				setattr(self, k, kwargs[k])
		return self

	def get_protocol(self):
		return 'https' if self.tls is True else 'http'

	def validate(self):
		"""Checks the fields and their dependencies, raises ConfigError with every problem found.

		A self signed certificate is only valid for localhost, asking for one
		with any other hostname (and no cert/key given) falls back to HTTP.
		"""
		problems = []
		if self.location is None or not os.path.exists(self.location):
			problems.append('%s DO NOT exist' % self.location)
		elif not os.path.isdir(self.location):
			problems.append('%s is not a directory' % self.location)

		if self.port is None or self.port < 0 or self.port > 65535:
			problems.append('Port must be between 0 and 65535, got %s' % self.port)

		if self.tls is True:
			if (self.cert is None) != (self.key is None):
				problems.append('"cert" and "key" must be given together, got only "%s"' % ('cert' if self.key is None else 'key'))
			elif self.self_signed is True and self.cert is None:
				if self.hostname not in SELFSIGNED_HOSTNAMES:
					logger.warning('Self signed certificate is valid only for hostnames %s, falling back to HTTP' % SELFSIGNED_HOSTNAMES[:2])
					self.tls = False
			else:
				for name in ['cert', 'key']:
					path = getattr(self, name)
					if path is None:
						problems.append('"%s" is required when TLS is enabled without a self signed certificate' % name)
					elif not os.path.isfile(path):
						problems.append('%s DO NOT exist' % path)

		if self.auth_enabled is True:
			if not self.username:
				problems.append('"username" is required when authorization is enabled')
			if not self.password:
				problems.append('"password" is required when authorization is enabled')
			if len(self.auth_rules) == 0:
				problems.append('At least one restricted realm is required when authorization is enabled')
			for rule in self.auth_rules:
				try:
					re.compile(rule)
				except re.error as e:
					problems.append('Invalid restricted realm "%s": %s' % (rule, e))

		if len(problems) > 0:
			raise ConfigError(problems)
		return self

	def __str__(self):
		t = '==== FileServerConfig ====\r\n'
		for k in config_fields:
			v = getattr(self, k)
			if k == 'password' and v is not None:
				v = '****'
			t += '%s: %s\r\n' % (k, v)
		return t
