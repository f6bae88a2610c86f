import os
import sys
import asyncio
import logging

from asyfileserver import logger
from asyfileserver._version import __banner__
from asyfileserver.accesslog import AccessLog
from asyfileserver.auth import basic_auth
from asyfileserver.certmanager import generate_selfsigned_cert, get_server_ssl_context
from asyfileserver.common.config import FileServerConfig
from asyfileserver.common.exceptions import ConfigError
from asyfileserver.common.pathmap import PathMap
from asyfileserver.protocol.app import App
from asyfileserver.serve import Serve
from asyfileserver.server import FileServer

WWW_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'www')


def build_app(config:FileServerConfig, accesslog:AccessLog, www_dir:str = None):
	hostname = config.hostname or 'localhost'
	if config.port:
		hostname = '%s:%s' % (hostname, config.port)
	app = App(hostname=hostname, trust_proxy=config.trust_proxy)
	app.prepend(accesslog.access_middleware)
	app.on_error(accesslog.error)

	if config.auth_enabled is True:
		app.use(basic_auth(config.username, config.password, config.auth_rules))

	path_map = PathMap.from_file(config.path_map) if config.path_map is not None else PathMap()
	serve = Serve(path_map=path_map, www_dir=www_dir).mount(config.location)
	for middleware in serve:
		app.use(middleware)
	return app

def get_ssl_context(config:FileServerConfig):
	if config.tls is False:
		return None
	certfile, keyfile = config.cert, config.key
	if certfile is None or keyfile is None:
		certfile, keyfile = generate_selfsigned_cert(config.hostname or 'localhost')
	return get_server_ssl_context(certfile, keyfile)

async def amain(config:FileServerConfig):
	accesslog = AccessLog(config.log_path)

	def exception_handler(loop, context):
		accesslog.critical('There was an uncaught error: %s' % context.get('exception', context.get('message')))
		loop.default_exception_handler(context)
	asyncio.get_running_loop().set_exception_handler(exception_handler)

	www_dir = WWW_DIR if os.path.isdir(WWW_DIR) else None
	app = build_app(config, accesslog, www_dir=www_dir)
	server = FileServer(app.callback(), config.hostname, config.port, ssl_ctx=get_ssl_context(config))
	try:
		await server.start()
	except OSError as e:
		accesslog.critical('Starting the server failed: %s' % e)
		raise
	logger.info('File server is running at %s' % server.get_url())
	try:
		await server.serve()
	finally:
		await server.terminate()
		accesslog.close()

def get_parser():
	import argparse
	parser = argparse.ArgumentParser(description='Static file server with listing, upload and range support')
	parser.add_argument('location', nargs='?', help='Root folder to serve files from')
	parser.add_argument('--host', help='Hostname to listen on')
	parser.add_argument('--port', type=int, help='Port to listen on, 0 picks a free one')
	parser.add_argument('--config', help='JSON configuration file, command line options override it')
	parser.add_argument('--tls', action='store_true', default=None, help='Serve over HTTPS, plaintext requests get redirected')
	parser.add_argument('--cert', help='Certificate file (PEM). Self signed localhost certificate is generated when omitted')
	parser.add_argument('--key', help='Private key file (PEM)')
	parser.add_argument('--auth-user', help='Username for HTTP Basic authentication')
	parser.add_argument('--auth-pass', help='Password for HTTP Basic authentication')
	parser.add_argument('--auth-rule', action='append', help='Regex of restricted paths, can be given multiple times')
	parser.add_argument('--log-path', help='Folder of access.log, error.log and critical.log')
	parser.add_argument('--path-map', help='JSON file of path aliases: [src, dst, src, dst, ...]')
	parser.add_argument('--trust-proxy', action='store_true', default=None, help='Trust X-Forwarded-* headers')
	parser.add_argument('-v', '--verbose', action='count', default=0)
	return parser

def get_config(args):
	config = FileServerConfig.from_file(args.config) if args.config is not None else FileServerConfig()
	config.update(
		location=args.location,
		hostname=args.host,
		port=args.port,
		tls=args.tls,
		cert=args.cert,
		key=args.key,
		log_path=args.log_path,
		path_map=args.path_map,
		trust_proxy=args.trust_proxy,
	)
	if args.cert is not None and args.key is not None:
		config.self_signed = False
	if args.auth_rule:
		config.update(auth_enabled=True, username=args.auth_user, password=args.auth_pass, auth_rules=args.auth_rule)
	return config.validate()

def main():
	parser = get_parser()
	args = parser.parse_args()

	if args.verbose == 1:
		logger.setLevel(logging.DEBUG)
	elif args.verbose > 1:
		logger.setLevel(1)

	try:
		config = get_config(args)
	except ConfigError as e:
		for problem in e.problems:
			print('[-] %s' % problem, file=sys.stderr)
		sys.exit(1)

	print(__banner__)
	logger.debug(str(config))
	try:
		asyncio.run(amain(config))
	except KeyboardInterrupt:
		logger.info('Shutting down...')

if __name__ == '__main__':
	main()
